# backend/consultdesk/services/meeting_service.py
"""
Meeting Provisioner.

Turns a session (platform, time window, participants) plus the consultant's
connected credential into a joinable link. Credential problems are detected
locally before any network call so the booking flow can decide whether to
fail (consultant path) or defer provisioning (public path).
"""

import logging
from typing import Any, Mapping, Optional

from ..core.config import settings
from ..core.exceptions import DomainException, ProviderException, ValidationException
from ..integrations.meeting_providers import (
    GoogleMeetProvider,
    MeetingCredential,
    MeetingDetails,
    MeetingErrorKind,
    MeetingLink,
    MeetingProviderError,
    TeamsProvider,
    ZoomProvider,
    require_token,
)
from ..models.client import Client
from ..models.consultant import Consultant
from ..models.session import ConsultationSession
from ..monitoring.prometheus_metrics import prometheus_metrics
from .base import BaseService

logger = logging.getLogger(__name__)

_DOMAIN_ERRORS = {
    MeetingErrorKind.CREDENTIAL_MISSING: (ValidationException, "MEETING_CREDENTIAL_MISSING"),
    MeetingErrorKind.CREDENTIAL_EXPIRED: (ValidationException, "MEETING_CREDENTIAL_EXPIRED"),
    MeetingErrorKind.INSUFFICIENT_PERMISSION: (ValidationException, "MEETING_PERMISSION_DENIED"),
    MeetingErrorKind.PROVIDER_UNAVAILABLE: (ProviderException, "MEETING_PROVIDER_UNAVAILABLE"),
    MeetingErrorKind.REQUEST_REJECTED: (ProviderException, "MEETING_GENERATION_ERROR"),
}

_USER_MESSAGES = {
    MeetingErrorKind.CREDENTIAL_MISSING: "{platform} account is not connected. Please connect it in settings.",
    MeetingErrorKind.CREDENTIAL_EXPIRED: "{platform} access has expired. Please reconnect your account.",
    MeetingErrorKind.INSUFFICIENT_PERMISSION: "{platform} account lacks permission to create meetings.",
    MeetingErrorKind.PROVIDER_UNAVAILABLE: "{platform} is temporarily unavailable. Please try again later.",
    MeetingErrorKind.REQUEST_REJECTED: "Failed to generate {platform} meeting link.",
}


def build_default_providers() -> dict:
    """Real provider clients configured from settings."""
    timeout = settings.meeting_provider_timeout_seconds
    return {
        "MEET": GoogleMeetProvider(base_url=settings.google_calendar_base_url, timeout=timeout),
        "TEAMS": TeamsProvider(base_url=settings.microsoft_graph_base_url, timeout=timeout),
        "ZOOM": ZoomProvider(
            account_id=settings.zoom_account_id,
            client_id=settings.zoom_client_id,
            client_secret=settings.zoom_client_secret,
            base_url=settings.zoom_api_base_url,
            oauth_url=settings.zoom_oauth_url,
            timeout=timeout,
        ),
    }


class MeetingService:
    """Provider registry plus the credential policy around it."""

    def __init__(self, providers: Mapping[str, Any]):
        self.providers = dict(providers)
        self.logger = logging.getLogger(self.__class__.__name__)

    def _provider(self, platform: str) -> Any:
        provider = self.providers.get(str(getattr(platform, "value", platform)))
        if provider is None:
            raise MeetingProviderError(
                MeetingErrorKind.REQUEST_REJECTED, f"Unsupported meeting platform: {platform}"
            )
        return provider

    @staticmethod
    def resolve_credential(consultant: Consultant, platform: str) -> Optional[MeetingCredential]:
        """The consultant's stored OAuth token for ``platform`` (None for ZOOM / not connected)."""
        platform = str(getattr(platform, "value", platform))
        if platform == "TEAMS" and consultant.teams_access_token:
            return MeetingCredential(
                access_token=consultant.teams_access_token,
                expires_at=consultant.teams_token_expires_at,
            )
        if platform == "MEET" and consultant.google_access_token:
            return MeetingCredential(
                access_token=consultant.google_access_token,
                expires_at=consultant.google_token_expires_at,
            )
        return None

    def check_credential(self, consultant: Consultant, platform: str) -> Optional[MeetingCredential]:
        """
        Resolve and validate the credential for ``platform`` without calling the provider.

        Raises MeetingProviderError (CREDENTIAL_MISSING / CREDENTIAL_EXPIRED).
        """
        provider = self._provider(platform)
        if not getattr(provider, "uses_consultant_token", True):
            if not getattr(provider, "is_configured", True):
                raise MeetingProviderError(
                    MeetingErrorKind.CREDENTIAL_MISSING, f"{platform} credentials are not configured"
                )
            return None
        credential = self.resolve_credential(consultant, platform)
        require_token(credential, str(getattr(platform, "value", platform)))
        return credential

    @staticmethod
    def build_details(
        session: ConsultationSession, consultant: Consultant, client: Client
    ) -> MeetingDetails:
        start = session.starts_at
        if start is None:
            raise ValueError("Cannot build meeting details for an unscheduled session")
        organizer_email = consultant.email
        if session.platform == "TEAMS" and consultant.teams_user_email:
            organizer_email = consultant.teams_user_email
        return MeetingDetails(
            title=session.title,
            start_time=start,
            duration_minutes=session.duration_minutes or 60,
            consultant_email=organizer_email,
            client_email=client.email,
            description=session.description,
            timezone=session.timezone or settings.booking_timezone,
        )

    @BaseService.measure_operation("generate_meeting_link")
    def generate_meeting_link(
        self,
        platform: str,
        details: MeetingDetails,
        credential: Optional[MeetingCredential] = None,
    ) -> MeetingLink:
        """Create a meeting; provider errors propagate as MeetingProviderError."""
        provider = self._provider(platform)
        platform_name = str(getattr(platform, "value", platform))
        try:
            link = provider.create_meeting(details, credential)
        except MeetingProviderError as exc:
            prometheus_metrics.record_meeting_link(platform_name, exc.kind.value)
            raise
        prometheus_metrics.record_meeting_link(platform_name, "created")
        self.logger.info(
            "Created %s meeting %s for %s",
            platform,
            link.meeting_id,
            details.start_time.isoformat(),
        )
        return link

    def provision_for_session(
        self, session: ConsultationSession, consultant: Consultant, client: Client
    ) -> MeetingLink:
        """Check the credential, then create the meeting for a scheduled session."""
        credential = self.check_credential(consultant, session.platform)
        details = self.build_details(session, consultant, client)
        return self.generate_meeting_link(session.platform, details, credential)

    def update_meeting(
        self,
        session: ConsultationSession,
        consultant: Consultant,
        client: Client,
    ) -> bool:
        """Best-effort PATCH of an existing meeting; False when it could not be updated."""
        if not session.meeting_id or not session.platform or not session.is_scheduled:
            return False
        try:
            provider = self._provider(session.platform)
            credential = self.resolve_credential(consultant, session.platform)
            provider.update_meeting(
                session.meeting_id, self.build_details(session, consultant, client), credential
            )
            return True
        except MeetingProviderError as exc:
            self.logger.warning(
                "Could not update %s meeting %s: %s (%s)",
                session.platform,
                session.meeting_id,
                exc.message,
                exc.kind.value,
            )
            return False

    def cancel_meeting(
        self, platform: Optional[str], meeting_id: Optional[str], consultant: Consultant
    ) -> bool:
        """Best-effort DELETE of a provider meeting."""
        if not platform or not meeting_id:
            return False
        try:
            provider = self._provider(platform)
            provider.cancel_meeting(meeting_id, self.resolve_credential(consultant, platform))
            return True
        except MeetingProviderError as exc:
            self.logger.warning(
                "Could not cancel %s meeting %s: %s (%s)",
                platform,
                meeting_id,
                exc.message,
                exc.kind.value,
            )
            return False

    @staticmethod
    def to_domain_exception(error: MeetingProviderError, platform: str) -> DomainException:
        """Translate a provider error into the API-facing exception with its code."""
        platform = str(getattr(platform, "value", platform))
        exc_cls, code = _DOMAIN_ERRORS[error.kind]
        return exc_cls(
            message=_USER_MESSAGES[error.kind].format(platform=platform),
            code=code,
            details={"platform": platform, "provider_status": error.status_code},
        )
