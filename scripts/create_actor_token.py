"""
Create Actor Token

Issues a signed access token for a student, college or depot actor, for
local testing against the API. Uses the JWT settings from the environment.

Usage:
    python scripts/create_actor_token.py student <student_id> --college-id <college_id>
    python scripts/create_actor_token.py college <college_id>
    python scripts/create_actor_token.py depot <depot_id> --minutes 120
"""

import argparse
import sys
from datetime import timedelta
from pathlib import Path
from uuid import UUID, uuid4

# Add the src directory to the path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from app.core.auth import ActorRole
from app.core.security import create_access_token


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue a development access token.")
    parser.add_argument("role", choices=[role.value for role in ActorRole])
    parser.add_argument("scope_id", type=UUID, help="Student, college or depot id")
    parser.add_argument("--user-id", type=UUID, default=None)
    parser.add_argument("--college-id", type=UUID, default=None, help="Student's college")
    parser.add_argument("--name", default=None)
    parser.add_argument("--email", default=None)
    parser.add_argument("--phone", default=None)
    parser.add_argument("--minutes", type=int, default=60)
    args = parser.parse_args()

    claims = {
        "role": args.role,
        "scope_id": str(args.scope_id),
        "name": args.name,
        "email": args.email,
        "phone": args.phone,
    }
    if args.college_id:
        claims["college_id"] = str(args.college_id)

    token = create_access_token(
        subject=str(args.user_id or uuid4()),
        claims={key: value for key, value in claims.items() if value is not None},
        expires_delta=timedelta(minutes=args.minutes),
    )
    print(token)


if __name__ == "__main__":
    main()
