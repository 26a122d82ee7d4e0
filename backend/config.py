"""
Application configuration.

Responsibilities:
- Read environment variables
- Provide typed, immutable config objects for one streaming session

Non-responsibilities:
- No protocol constants (spec.py)
- No runtime mutation: the model version is a field, not process-wide state
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from errors import ConfigurationError
from protocol.messages import RequestOptions
from spec import (
    DEFAULT_MODEL_VERSION,
    DEFAULT_SEGMENT_DURATION_MS,
    MODEL_RESOURCE_IDS,
    RESULT_TYPE_FULL,
    RESULT_TYPE_SINGLE,
    RESULT_TYPES,
    URL_NOSTREAM,
    URL_REALTIME,
)


@dataclass(frozen=True)
class Credentials:
    """
    Vendor credentials. Never logged.
    """
    app_key: str
    access_key: str = field(repr=False)


@dataclass(frozen=True)
class AsrConfig:
    """
    Immutable configuration for streaming sessions.

    Constructed once at process startup and shared by every session;
    nothing in it changes per session.
    """

    # ------------------------------------------------------------------
    # Endpoint / auth
    # ------------------------------------------------------------------

    url: str
    credentials: Credentials
    model_version: str = DEFAULT_MODEL_VERSION

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    segment_duration_ms: int = DEFAULT_SEGMENT_DURATION_MS
    context: str = ""

    # ------------------------------------------------------------------
    # Recognition mode
    # ------------------------------------------------------------------

    enable_nonstream: bool = False
    result_type: str = RESULT_TYPE_FULL

    @property
    def resource_id(self) -> str:
        """
        Resource id for the configured model version.

        Raises:
            ConfigurationError for versions outside MODEL_RESOURCE_IDS.
        """
        try:
            return MODEL_RESOURCE_IDS[self.model_version]
        except KeyError as e:
            raise ConfigurationError(
                f"unknown model version {self.model_version!r}; "
                f"expected one of {sorted(MODEL_RESOURCE_IDS)}"
            ) from e

    @property
    def realtime(self) -> bool:
        return self.result_type == RESULT_TYPE_SINGLE

    def request_options(self) -> RequestOptions:
        return RequestOptions(
            enable_nonstream=self.enable_nonstream,
            result_type=self.result_type,
        )

    def validate(self) -> None:
        """
        Raise ConfigurationError for values that would break a session.
        """
        if not self.url:
            raise ConfigurationError("url is empty")
        if self.segment_duration_ms <= 0:
            raise ConfigurationError(
                f"segment_duration_ms must be > 0, got {self.segment_duration_ms}"
            )
        if self.result_type not in RESULT_TYPES:
            raise ConfigurationError(f"unknown result_type {self.result_type!r}")
        _ = self.resource_id

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def for_mode(
        *,
        realtime: bool,
        credentials: Credentials,
        model_version: str = DEFAULT_MODEL_VERSION,
        url: str | None = None,
        segment_duration_ms: int = DEFAULT_SEGMENT_DURATION_MS,
        context: str = "",
    ) -> AsrConfig:
        """
        realtime=True  -> bigmodel_async,    enable_nonstream, result_type=single
        realtime=False -> bigmodel_nostream, result_type=full
        """
        return AsrConfig(
            url=url or (URL_REALTIME if realtime else URL_NOSTREAM),
            credentials=credentials,
            model_version=model_version,
            segment_duration_ms=segment_duration_ms,
            context=context,
            enable_nonstream=realtime,
            result_type=RESULT_TYPE_SINGLE if realtime else RESULT_TYPE_FULL,
        )

    @staticmethod
    def load_from_env() -> AsrConfig:
        """
        Load configuration from environment variables.

        VOLC_APPID, VOLC_TOKEN    credentials (required)
        VOLC_URL                  endpoint override
        VOLC_MODEL                model version (v1 / v2)
        VOLC_REALTIME             "1" for the realtime endpoint
        VOLC_SEGMENT_MS           segment duration in milliseconds

        Raises:
            ConfigurationError if credentials are missing.
        """
        app_key = os.environ.get("VOLC_APPID", "")
        access_key = os.environ.get("VOLC_TOKEN", "")
        if not app_key or not access_key:
            raise ConfigurationError("VOLC_APPID and VOLC_TOKEN must be set")

        try:
            segment_ms = int(os.environ.get("VOLC_SEGMENT_MS", str(DEFAULT_SEGMENT_DURATION_MS)))
        except ValueError as e:
            raise ConfigurationError(f"VOLC_SEGMENT_MS is not an integer: {e}") from e

        return AsrConfig.for_mode(
            realtime=os.environ.get("VOLC_REALTIME", "0") == "1",
            credentials=Credentials(app_key=app_key, access_key=access_key),
            model_version=os.environ.get("VOLC_MODEL", DEFAULT_MODEL_VERSION),
            url=os.environ.get("VOLC_URL") or None,
            segment_duration_ms=segment_ms,
        )
