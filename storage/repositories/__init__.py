from .verifications import VerificationRepository

__all__ = ["VerificationRepository"]
