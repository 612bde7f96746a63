"""fleetaccess.impersonation - bounded identity assumption with audit."""

from fleetaccess.impersonation.manager import ImpersonationManager

__all__ = ["ImpersonationManager"]
