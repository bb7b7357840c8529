"""
Concession Applications Module

Student transit-concession applications moving through college verification,
depot approval, payment and pass issue.
"""

from app.modules.concession_applications.router import router

__all__ = ["router"]
