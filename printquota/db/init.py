import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from printquota.core.config import get_settings
from printquota.models.audit_log import AuditLog
from printquota.models.document import UploadedDocumentRecord
from printquota.models.page_balance import PageBalanceRecord
from printquota.models.print_job import PrintConfigRecord, PrintJobRecord
from printquota.models.printer import PrinterRecord
from printquota.models.topup_transaction import TopUpRecord

DOCUMENT_MODELS = [
    PrinterRecord,
    UploadedDocumentRecord,
    PageBalanceRecord,
    PrintConfigRecord,
    PrintJobRecord,
    TopUpRecord,
    AuditLog,
]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def create_client(uri: str) -> AsyncIOMotorClient:
    kwargs = {"uuidRepresentation": "standard"}
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(uri, **kwargs)


def get_client() -> AsyncIOMotorClient:
    """Client opened by init_db; the billing store needs it to start sessions."""
    if _client is None:
        raise RuntimeError("Database not initialised; call init_db() first")
    return _client


async def init_db(uri: str | None = None, db_name: str | None = None) -> None:
    global _client
    settings = get_settings()
    _client = create_client(uri or settings.mongodb_uri)
    database = _client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
