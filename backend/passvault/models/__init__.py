from .locations import Location
from .certificates import Certificate, CertificateAuditEntry, AuditLogImmutableError
from .auth import SessionToken

__all__ = [
    'Location',
    'Certificate', 'CertificateAuditEntry', 'AuditLogImmutableError',
    'SessionToken',
]
