from app.models.identity import (  # noqa: F401
    ClaimStatus,
    Contributor,
    Event,
    EventReference,
    EventStatus,
    Mention,
    MentionSource,
    MentionStatus,
    Person,
    PersonAlias,
    PersonClaim,
    ReferenceRole,
    ReferenceType,
    Visibility,
    VisibilityPreference,
)
