from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class DeviceMetadataBody(BaseModel):
    did_document: str = ""
    public_key: str = ""  # hex, optional 0x prefix
    device_type: str = ""
    manufacturer: str = ""
    model: str = ""
    firmware_version: str = ""
    deployment_zone: str = ""
    expected_data_rate: int = 0


class RegisterDeviceRequest(BaseModel):
    identifier: str
    metadata: DeviceMetadataBody = Field(default_factory=DeviceMetadataBody)
    payment: int = 0


class RequirementsUpdate(BaseModel):
    requires_verified_compute: Optional[bool] = None
    encryption_level: Optional[int] = None
    analytics_tier: Optional[int] = None
    settlement_priority: Optional[int] = None


class FeeUpdate(BaseModel):
    new_fee: int


class SubmitterUpdate(BaseModel):
    authorized_submitter: str


class SubmissionRequest(BaseModel):
    device_id_hash: str
    payload: Dict[str, Any]


class AnalyticsConfigUpdate(BaseModel):
    enabled: bool
    processing_fee: int
    requires_proof: bool


class ProofSubmission(BaseModel):
    proof: str  # hex, optional 0x prefix
    public_inputs: str = ""
    is_valid: bool = True
