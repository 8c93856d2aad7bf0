import json
from dataclasses import dataclass

import requests
from flask import current_app
from pywebpush import WebPushException, webpush


class PushConfigError(RuntimeError):
    pass


class PushDeliveryError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PushGoneError(PushDeliveryError):
    """The push service reports the endpoint as expired or unknown (404/410)."""


GONE_STATUS_CODES = {404, 410}


@dataclass(frozen=True)
class VapidConfig:
    public_key: str
    private_key: str
    subject: str

    @classmethod
    def from_mapping(cls, config) -> "VapidConfig":
        public_key = (config.get("VAPID_PUBLIC_KEY") or "").strip()
        private_key = (config.get("VAPID_PRIVATE_KEY") or "").strip()
        subject = (config.get("VAPID_SUBJECT") or "").strip()
        missing = [
            name
            for name, value in (
                ("VAPID_PUBLIC_KEY", public_key),
                ("VAPID_PRIVATE_KEY", private_key),
                ("VAPID_SUBJECT", subject),
            )
            if not value
        ]
        if missing:
            raise PushConfigError(f"Missing push configuration: {', '.join(missing)}")
        return cls(public_key=public_key, private_key=private_key, subject=subject)


def subscription_info(row) -> dict:
    return {"endpoint": row.endpoint, "keys": {"p256dh": row.p256dh, "auth": row.auth}}


class WebPushTransport:
    """Sends Web Push messages with an explicit VAPID key pair."""

    def __init__(self, vapid: VapidConfig, timeout: float = 10):
        self.vapid = vapid
        self.timeout = timeout

    def send(self, subscription: dict, payload: dict) -> None:
        try:
            webpush(
                subscription_info=subscription,
                data=json.dumps(payload),
                vapid_private_key=self.vapid.private_key,
                vapid_claims={"sub": self.vapid.subject},
                timeout=self.timeout,
            )
        except WebPushException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            if status_code in GONE_STATUS_CODES:
                raise PushGoneError(str(exc), status_code=status_code) from exc
            raise PushDeliveryError(str(exc), status_code=status_code) from exc
        except requests.RequestException as exc:
            raise PushDeliveryError(str(exc)) from exc


def build_transport(config) -> WebPushTransport:
    return WebPushTransport(
        VapidConfig.from_mapping(config),
        timeout=config.get("PUSH_SEND_TIMEOUT_SECONDS", 10),
    )


def get_push_transport():
    transport = current_app.extensions.get("push_transport")
    if transport is None:
        transport = build_transport(current_app.config)
        current_app.extensions["push_transport"] = transport
    return transport
