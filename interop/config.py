"""
Interop client configuration.

Configuration sources (in order of precedence):
    1. Environment variables (INTEROP_*)
    2. Runtime overrides (``ConfigValue.set`` / ``InteropConfig.set``)
    3. YAML config file (``InteropConfig.from_yaml``)
    4. Default values

Example YAML:

    auth:
      token_endpoint: https://iam.example.org/oauth2/token
      client_key: dfsp-a
      client_secret: s3cr3t
      refresh_seconds: 3600
    signing:
      enabled: true
      overrides: {parties: false}
      key_path: /secrets/jws-signing-key.pem
    peer:
      dfsp_id: dfsp-a
      peer_endpoint: switch.example.org:4000
      wire_dialect: iso20022
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")

_SECRET_MASK = "***"


class ConfigError(Exception):
    """Configuration error."""
    pass


class ValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    secret: bool = False  # Don't log if True
    value_type: Optional[type] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            env_value = os.environ[self.env_var]
            return self._coerce(env_value)

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if isinstance(value, str) and self._target_type() is not str:
            value = self._coerce(value)
        if self.validator and value is not None and not self.validator(value):
            shown = _SECRET_MASK if self.secret else value
            raise ValidationError(f"Invalid value for config: {shown}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def _target_type(self) -> type:
        if self.value_type is not None:
            return self.value_type
        return type(self.default)

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = self._target_type()

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == float:
            return float(value)  # type: ignore
        elif target_type == list:
            return value.split(",")  # type: ignore
        elif target_type == dict:
            parsed = yaml.safe_load(value) if value.strip() else {}
            if not isinstance(parsed, dict):
                raise ValidationError(f"Expected a mapping, got: {value!r}")
            return parsed  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


def _bool_map(value: Dict[str, Any]) -> bool:
    return all(isinstance(k, str) and isinstance(v, bool) for k, v in value.items())


@dataclass
class AuthConfig:
    """Bearer token acquisition and refresh."""
    token_endpoint: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_AUTH_TOKEN_ENDPOINT",
        description="OAuth2 token endpoint URL",
    ))
    client_key: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_AUTH_CLIENT_KEY",
        description="OAuth2 client key",
    ))
    client_secret: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_AUTH_CLIENT_SECRET",
        description="OAuth2 client secret",
        secret=True,
    ))
    static_token: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_AUTH_STATIC_TOKEN",
        description="Fixed bearer token; disables acquisition and refresh",
        secret=True,
    ))
    refresh_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=60.0,
        env_var="INTEROP_AUTH_REFRESH_SECONDS",
        description="Upper bound on the token refresh interval",
        validator=lambda x: x > 0,
    ))
    refresh_retry_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=10.0,
        env_var="INTEROP_AUTH_REFRESH_RETRY_SECONDS",
        description="Delay before retrying a failed token acquisition",
        validator=lambda x: x > 0,
    ))
    fail_on_expired: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="INTEROP_AUTH_FAIL_ON_EXPIRED",
        description="Stop serving a token once its expires_in has elapsed",
    ))


@dataclass
class SigningConfig:
    """JWS message signing."""
    enabled: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="INTEROP_SIGNING_ENABLED",
        description="Sign outbound requests",
    ))
    overrides: ConfigValue[Dict[str, bool]] = field(default_factory=lambda: ConfigValue(
        default={},
        env_var="INTEROP_SIGNING_OVERRIDES",
        description="Per resource type signing switch, e.g. {parties: false}",
        validator=_bool_map,
    ))
    key_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_SIGNING_KEY_PATH",
        description="Path to the PEM encoded signing key",
    ))
    key: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_SIGNING_KEY",
        description="Inline PEM encoded signing key (takes precedence over key_path)",
        secret=True,
    ))


@dataclass
class PeerConfig:
    """Identity of this participant and where its peers live."""
    dfsp_id: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_DFSP_ID",
        description="FSPIOP identifier of this participant (fspiop-source)",
    ))
    peer_endpoint: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_PEER_ENDPOINT",
        description="Default host[:port] of the switch or peer",
    ))
    endpoints: ConfigValue[Dict[str, str]] = field(default_factory=lambda: ConfigValue(
        default={},
        env_var="INTEROP_PEER_ENDPOINTS",
        description="Per resource type host[:port] overrides, e.g. {parties: als:4002}",
    ))
    resource_versions: ConfigValue[Dict[str, Any]] = field(default_factory=lambda: ConfigValue(
        default={},
        env_var="INTEROP_RESOURCE_VERSIONS",
        description="Per resource {contentVersion, acceptVersion}",
    ))
    wire_dialect: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="fspiop",
        env_var="INTEROP_WIRE_DIALECT",
        description="Body dialect (fspiop, iso20022)",
        validator=lambda x: x in ("fspiop", "iso20022"),
    ))
    strict_mappings: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="INTEROP_STRICT_MAPPINGS",
        description="Fail calls whose resource type has no ISO 20022 mapping",
    ))
    request_timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=30.0,
        env_var="INTEROP_REQUEST_TIMEOUT_SECONDS",
        description="Total timeout per outbound request",
        validator=lambda x: x > 0,
    ))


@dataclass
class TLSConfig:
    """Mutual TLS material for the transport."""
    mutual_tls: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="INTEROP_TLS_MUTUAL",
        description="Use https with client certificates",
    ))
    ca_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_TLS_CA_PATH",
        description="CA bundle used to verify peers",
    ))
    cert_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_TLS_CERT_PATH",
        description="Client certificate chain",
    ))
    key_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="INTEROP_TLS_KEY_PATH",
        description="Client private key",
    ))


@dataclass
class ObservabilityConfig:
    """Logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="INTEROP_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="text",
        env_var="INTEROP_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class InteropConfig:
    """
    Root configuration for the outbound client.

    Aggregates all section configurations and provides
    loading/saving functionality.
    """
    auth: AuthConfig = field(default_factory=AuthConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)
    peer: PeerConfig = field(default_factory=PeerConfig)
    tls: TLSConfig = field(default_factory=TLSConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "InteropConfig":
        config = cls()
        if data:
            config.apply(data)
        return config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "InteropConfig":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")
        return cls.from_dict(data)

    def apply(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration; unknown keys are errors."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                path = f"{prefix}{key}"
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{path}.")
                else:
                    raise ConfigError(f"Invalid value for config section: {path}")

        apply_to_config(self, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("auth.refresh_seconds", 300)
        """
        parts = path.split(".")
        obj: Any = self

        for part in parts[:-1]:
            obj = getattr(obj, part)

        attr = getattr(obj, parts[-1], None)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("peer.wire_dialect")
        """
        obj: Any = self
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def validate(self) -> List[str]:
        """
        Validate all configuration values and their combinations.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        shown = _SECRET_MASK if obj.secret else value
                        errors.append(f"{path}: validation failed for value {shown}")
                except Exception as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self)

        if not self.auth.static_token.get() and self.auth.token_endpoint.get():
            if not self.auth.client_key.get() or not self.auth.client_secret.get():
                errors.append("auth: token_endpoint requires client_key and client_secret")
        if self.signing.enabled.get() or any(self.signing.overrides.get().values()):
            if not self.signing.key.get() and not self.signing.key_path.get():
                errors.append("signing: enabled without key or key_path")
        if self.tls.mutual_tls.get():
            for name in ("ca_path", "cert_path", "key_path"):
                if not getattr(self.tls, name).get():
                    errors.append(f"tls.{name}: required when mutual_tls is enabled")
        return errors

    def load_signing_key(self) -> Optional[bytes]:
        """PEM bytes of the configured signing key, or ``None`` when unset."""
        inline = self.signing.key.get()
        if inline:
            return inline.encode("utf-8")
        path = self.signing.key_path.get()
        if not path:
            return None
        key_file = Path(path)
        if not key_file.exists():
            raise ConfigError(f"Signing key not found: {key_file}")
        return key_file.read_bytes()

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        """Convert to dictionary; secrets are masked unless ``redact`` is False."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                value = obj.get()
                if redact and obj.secret and value:
                    return _SECRET_MASK
                return value
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self, redact: bool = True) -> str:
        """Convert to YAML string."""
        return yaml.safe_dump(self.to_dict(redact=redact), default_flow_style=False)
