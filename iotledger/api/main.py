from contextlib import contextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request

from ..config import LOG_FILE, LOG_JSON, LOG_LEVEL, is_debug, is_production, validate_config
from ..errors import (
    AlreadyRegistered,
    DeviceNotRegistered,
    InsufficientFee,
    InvalidPayload,
    LedgerError,
    RecordNotFound,
    RegistryPaused,
    Unauthorized,
)
from ..events import EventType
from ..logging_config import configure_logging, get_request_id, set_request_id
from ..models import DeviceMetadata
from ..service import LedgerService
from .models import (
    AnalyticsConfigUpdate,
    FeeUpdate,
    ProofSubmission,
    RegisterDeviceRequest,
    RequirementsUpdate,
    SubmissionRequest,
    SubmitterUpdate,
)

app = FastAPI(title="iotledger", debug=is_debug())

ERROR_STATUS = {
    Unauthorized: 403,
    AlreadyRegistered: 409,
    DeviceNotRegistered: 404,
    InsufficientFee: 402,
    InvalidPayload: 422,
    RegistryPaused: 423,
    RecordNotFound: 404,
}

SERVICE: Optional[LedgerService] = None


def set_service(service: Optional[LedgerService]) -> None:
    """Install the ledger the routes operate on (tests use an in-memory one)."""
    global SERVICE
    SERVICE = service


def get_service() -> LedgerService:
    if SERVICE is None:
        raise HTTPException(503, "LEDGER_NOT_READY")
    return SERVICE


@contextmanager
def ledger_errors():
    try:
        yield
    except LedgerError as e:
        raise HTTPException(ERROR_STATUS.get(type(e), 400), e.code) from e


@app.on_event("startup")
def _startup():
    # prod always logs JSON
    configure_logging(LOG_LEVEL, LOG_JSON or is_production(), LOG_FILE)
    if SERVICE is not None:
        return
    problems = validate_config()["errors"]
    if problems:
        raise RuntimeError("invalid configuration: " + "; ".join(problems))
    set_service(LedgerService.from_config())


@app.middleware("http")
async def request_context(request: Request, call_next):
    set_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = get_request_id()
    return response


# ============================================================
# Identity registry
# ============================================================

@app.post("/devices")
def register_device(req: RegisterDeviceRequest, x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        metadata = DeviceMetadata.from_dict(req.metadata.model_dump())
        id_hash = svc.registry.register(x_caller_address, req.identifier, metadata, req.payment)
    return {"id_hash": id_hash}


@app.get("/devices/{id_hash}")
def get_device(id_hash: str):
    with ledger_errors():
        return get_service().registry.get_device(id_hash).to_dict()


@app.get("/devices/{id_hash}/registered")
def device_registered(id_hash: str):
    with ledger_errors():
        return {"id_hash": id_hash, "registered": get_service().registry.is_registered(id_hash)}


@app.put("/devices/{id_hash}/requirements")
def update_requirements(id_hash: str, req: RequirementsUpdate, x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        updated = svc.registry.set_processing_requirements(x_caller_address, id_hash, **req.model_dump())
    return updated.to_dict()


@app.get("/devices/{id_hash}/records")
def device_records(id_hash: str):
    with ledger_errors():
        return {"id_hash": id_hash, "data_hashes": get_service().ledger.records_for_device(id_hash)}


@app.get("/owners/{address}/devices")
def owner_devices(address: str):
    with ledger_errors():
        return {"owner": address.lower(), "devices": get_service().registry.devices_of(address)}


@app.get("/registry")
def registry_info():
    svc = get_service()
    return {
        "owner": svc.registry.owner(),
        "fee": svc.registry.fee(),
        "device_count": svc.registry.device_count(),
        "paused": svc.registry.is_paused(),
    }


@app.put("/registry/fee")
def update_fee(req: FeeUpdate, x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        svc.registry.set_fee(x_caller_address, req.new_fee)
    return {"fee": svc.registry.fee()}


@app.post("/registry/pause")
def pause_registry(x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        svc.registry.pause(x_caller_address)
    return {"paused": svc.registry.is_paused()}


@app.post("/registry/unpause")
def unpause_registry(x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        svc.registry.unpause(x_caller_address)
    return {"paused": svc.registry.is_paused()}


# ============================================================
# Authority
# ============================================================

@app.get("/authority")
def authority_info():
    svc = get_service()
    return {
        "owner": svc.authority.owner(),
        "authorized_submitter": svc.authority.authorized_submitter(),
    }


@app.put("/authority/submitter")
def update_submitter(req: SubmitterUpdate, x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        svc.authority.set_authorized_submitter(x_caller_address, req.authorized_submitter)
    return {"authorized_submitter": svc.authority.authorized_submitter()}


# ============================================================
# Ingestion
# ============================================================

@app.post("/submissions")
def submit(req: SubmissionRequest, x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        result = svc.ledger.submit(x_caller_address, req.device_id_hash, req.payload)
    return result.to_dict()


@app.get("/records/{record_id}")
def get_record(record_id: int):
    with ledger_errors():
        return get_service().ledger.get_record(record_id).to_dict()


# Declared before /analytics/{record_id} so "configs" is not parsed as an id
@app.get("/analytics/configs")
def analytics_configs():
    configs = get_service().ledger.analytics_configs()
    return [configs[key].to_dict() for key in sorted(configs)]


@app.put("/analytics/configs/{analytics_type}")
def update_analytics_config(analytics_type: int, req: AnalyticsConfigUpdate,
                            x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        config = svc.ledger.update_analytics_config(
            x_caller_address, analytics_type, req.enabled, req.processing_fee, req.requires_proof
        )
    return config.to_dict()


@app.get("/analytics/{record_id}")
def get_analytics(record_id: int):
    with ledger_errors():
        return get_service().ledger.get_analytics(record_id).to_dict()


@app.post("/analytics/{record_id}/proofs")
def store_proof(record_id: int, req: ProofSubmission, x_caller_address: str = Header("")):
    svc = get_service()
    with ledger_errors():
        attestation = svc.ledger.store_proof(
            x_caller_address, record_id, req.proof, req.public_inputs, req.is_valid
        )
    return attestation.to_dict()


@app.get("/analytics/{record_id}/proofs")
def record_proofs(record_id: int):
    with ledger_errors():
        return [p.to_dict() for p in get_service().ledger.proofs_for_record(record_id)]


# ============================================================
# Probes
# ============================================================

@app.get("/ping")
def ping():
    return {"ping": get_service().ledger.ping()}


@app.get("/stats")
def stats():
    return get_service().stats()


# ============================================================
# Event log
# ============================================================

@app.get("/events")
def events(since_seq: int = 0, event_type: Optional[str] = None):
    kind = None
    if event_type is not None:
        try:
            kind = EventType(event_type)
        except ValueError:
            raise HTTPException(422, "UNKNOWN_EVENT_TYPE")
    return [e.to_dict() for e in get_service().events.entries(since_seq, kind)]


@app.get("/events/proof")
def events_proof():
    return get_service().events.proof()
