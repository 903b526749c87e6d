from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

RequestStatus = Literal["requested", "assigned", "in_progress", "completed", "cancelled"]
ActorRole = Literal["customer", "dispatcher", "admin"]
Category = Literal["IT & TECH", "POWER/SOLAR", "PLUMBING", "ESSENTIALS", "HOUSEHOLD", "OTHER"]
SubscriptionTier = Literal["Basic", "Standard", "Premium"]


class ServiceType(BaseModel):
    id: str
    category: Category
    title: str
    description: str
    icon: str = ""
    base_price: float
    priority: Literal["High", "Normal"] = "Normal"


class Dispatcher(BaseModel):
    id: str
    name: str
    role: str = ""
    rating: float = 5.0
    certifications: list[str] = Field(default_factory=list)
    photo_url: str = ""
    working_video_url: Optional[str] = None
    field_photo_url: Optional[str] = None
    supported_service_ids: list[str] = Field(default_factory=list)


class DispatcherEnlistRequest(BaseModel):
    actor_user_id: str
    id: str
    name: str
    role: str = ""
    certifications: list[str] = Field(default_factory=list)
    photo_url: str = ""
    working_video_url: Optional[str] = None
    field_photo_url: Optional[str] = None
    supported_service_ids: list[str] = Field(default_factory=list)


class Dependant(BaseModel):
    id: str
    user_id: str
    name: str
    date_of_birth: str = ""
    location: str
    full_address: str = ""
    medical_conditions: str = ""
    medications: list[str] = Field(default_factory=list)
    photo_url: Optional[str] = None
    gender: Literal["Male", "Female"]


class DependantCreateRequest(BaseModel):
    user_id: str
    name: str
    date_of_birth: str = ""
    location: str
    full_address: str = ""
    medical_conditions: str = ""
    medications: list[str] = Field(default_factory=list)
    photo_url: Optional[str] = None
    gender: Literal["Male", "Female"]


class DependantUpdateRequest(BaseModel):
    user_id: str
    name: Optional[str] = None
    date_of_birth: Optional[str] = None
    location: Optional[str] = None
    full_address: Optional[str] = None
    medical_conditions: Optional[str] = None
    medications: Optional[list[str]] = None
    photo_url: Optional[str] = None
    gender: Optional[Literal["Male", "Female"]] = None


class ServiceRequestRecord(BaseModel):
    id: str
    user_id: str
    dependant_id: str
    parent_name: str
    location: str
    service_id: str
    service_title: str
    category: Category
    urgent_notes: str = ""
    is_custom: bool = False
    expat_price: float
    runner_payout: float
    status: RequestStatus
    assigned_dispatcher_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    ai_reassurance: Optional[str] = None
    created_at: str
    updated_at: str


class ServiceRequestCreate(BaseModel):
    user_id: str
    dependant_id: str
    service_id: str
    notes: str = ""
    custom_description: str = ""
    price: Optional[float] = None


class StatusAdvanceRequest(BaseModel):
    actor_user_id: str
    status: RequestStatus
    note: str = ""


class CancelRequestBody(BaseModel):
    actor_user_id: str
    reason: str


class RequestStatusChange(BaseModel):
    id: str
    request_id: str
    actor_user_id: str
    from_status: str
    to_status: str
    note: str = ""
    created_at: str


class ChangeEvent(BaseModel):
    id: str
    kind: Literal["request", "notification"]
    action: Literal["created", "updated"]
    request: Optional[ServiceRequestRecord] = None
    notification: Optional["NotificationRecord"] = None
    created_at: str


class UserProfile(BaseModel):
    id: str
    email: str
    name: str
    phone: str = ""
    country: str = ""
    address: str = ""
    date_of_birth: Optional[str] = None
    photo_url: str = ""
    plan: SubscriptionTier = "Basic"
    email_verified: bool = False
    created_at: str


class SignupRequest(BaseModel):
    email: EmailStr
    password: str
    name: str
    phone: str = ""
    country: str = ""
    address: str = ""
    date_of_birth: Optional[str] = None
    plan: SubscriptionTier = "Basic"


class SignupResponse(BaseModel):
    user: UserProfile
    verification_token: str


class VerifyEmailRequest(BaseModel):
    token: str


class ProfileUpdateRequest(BaseModel):
    user_id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    country: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[str] = None
    photo_url: Optional[str] = None
    plan: Optional[SubscriptionTier] = None


class AuthLoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    role: ActorRole
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str
    role: ActorRole


class DeviceTokenRegisterRequest(BaseModel):
    user_id: str
    device_token: str
    platform: Literal["android", "ios", "web"] = "web"


class NotificationRecord(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    category: Literal["request", "account", "system"] = "system"
    read: bool = False
    created_at: str
    request_id: Optional[str] = None


class MediaObject(BaseModel):
    id: str
    owner_id: str
    filename: str
    content_type: str
    size_bytes: int
    url: str


ChangeEvent.model_rebuild()
