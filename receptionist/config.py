"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("receptionist.config")


class Settings(BaseSettings):
    # LLM intent classifier
    llm_provider: str = "claude"  # "claude", "ollama" or "none"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-latest"
    anthropic_url: str = "https://api.anthropic.com/v1/messages"
    ollama_model: str = "qwen2.5:7b"
    ollama_url: str = "http://localhost:11434"
    intent_engine_enabled: bool = True
    classifier_timeout_seconds: float = 0.4

    # Scheduling backend
    scheduling_base_url: str = ""
    scheduling_api_key: str = ""
    scheduling_timeout_seconds: float = 5.0
    scheduling_read_retries: int = 1
    availability_cache_ttl_seconds: int = 300
    # PATCH statuses meaning "reschedule not supported here" -> cancel + create
    reschedule_fallback_statuses: list[int] = [404, 405, 501]
    # Statuses a cancel can return for an appointment that is already cancelled
    already_cancelled_statuses: list[int] = [409, 422]

    # Practice
    tenant_id: str = ""
    clinic_name: str = "the clinic"
    clinic_address: str = ""
    clinic_hours: str = "Monday to Friday, 8 AM to 6 PM"
    clinic_fees: str = ""
    timezone: str = "Australia/Brisbane"
    practitioner_ids: list[str] = []
    practitioner_names: dict[str, str] = {}
    appointment_type_id: str = ""
    new_patient_appointment_type_id: str = ""
    appointment_duration_minutes: int = 30
    slot_lead_minutes: int = 15

    # Dialogue
    max_failed_turns: int = 3
    gather_timeout_seconds: int = 8
    call_state_ttl_seconds: int = 3600
    handoff_number: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def classifier_configured(self) -> bool:
        if not self.intent_engine_enabled or self.llm_provider == "none":
            return False
        if self.llm_provider == "claude":
            return bool(self.anthropic_api_key)
        return bool(self.ollama_url)

    def appointment_type_for(self, new_patient: bool | None) -> str:
        """New patients get the longer initial consult type when one is configured."""
        if new_patient is True and self.new_patient_appointment_type_id:
            return self.new_patient_appointment_type_id
        return self.appointment_type_id

    def practitioner_name(self, practitioner_id: str) -> str:
        return self.practitioner_names.get(practitioner_id, "")

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"sk-ant-...", "https://api.example.com"}

        if self.llm_provider not in {"claude", "ollama", "none"}:
            raise ValueError(
                f"LLM_PROVIDER must be claude, ollama or none (got {self.llm_provider!r})."
            )

        if self.max_failed_turns < 1:
            raise ValueError("MAX_FAILED_TURNS must be at least 1.")

        if self.llm_provider == "claude" and (
            not self.anthropic_api_key or self.anthropic_api_key in _placeholders
        ):
            warnings.append(
                "ANTHROPIC_API_KEY not set. Intent classification uses keywords only."
            )

        if not self.scheduling_base_url or self.scheduling_base_url in _placeholders:
            warnings.append(
                "SCHEDULING_BASE_URL not set. Booking, reschedule and cancel will hand off to staff."
            )

        if not self.practitioner_ids:
            warnings.append("PRACTITIONER_IDS is empty. No availability can be offered.")

        if not self.appointment_type_id:
            warnings.append("APPOINTMENT_TYPE_ID not set.")

        return warnings


settings = Settings()
