"""
VAPID key management and Web Push delivery
"""
import asyncio
import base64
import json
import logging
from typing import Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from py_vapid import Vapid
from pywebpush import webpush, WebPushException

from . import config

logger = logging.getLogger(__name__)

_vapid_keys: Optional[Tuple[str, str]] = None


def generate_vapid_keys() -> Tuple[str, str]:
    """New P-256 key pair: (PEM private key, urlsafe-base64 X962 public key)"""
    private_key = ec.generate_private_key(ec.SECP256R1())
    public_key = private_key.public_key()

    # Get public key in X962 uncompressed format
    public_key_bytes = public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint
    )
    public = base64.urlsafe_b64encode(public_key_bytes).rstrip(b'=').decode('utf-8')

    private = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')
    return private, public


def get_vapid_keys() -> Tuple[str, str]:
    """Keys from the environment, else vapid_keys.json, else freshly generated and saved"""
    global _vapid_keys
    if _vapid_keys:
        return _vapid_keys

    private, public = config.VAPID_PRIVATE_KEY, config.VAPID_PUBLIC_KEY
    if not private or not public:
        keys_file = config.VAPID_KEYS_FILE
        if keys_file.exists():
            try:
                with open(keys_file) as f:
                    keys = json.load(f)
                    private = keys.get('private_key')
                    public = keys.get('public_key')
            except (json.JSONDecodeError, IOError) as e:
                logger.warning(f"Could not read {keys_file}: {e}")

        if not private or not public:
            private, public = generate_vapid_keys()
            # Save for persistence
            try:
                with open(keys_file, 'w') as f:
                    json.dump({'private_key': private, 'public_key': public}, f)
            except IOError as e:
                logger.warning(f"Could not save VAPID keys: {e}")

    _vapid_keys = (private, public)
    return _vapid_keys


class PushGoneError(Exception):
    """The push service reports the subscription no longer exists"""


async def send_push(subscription: dict, title: str, body: str, data: Optional[dict] = None) -> None:
    """Deliver one push message. Raises PushGoneError for expired subscriptions."""
    private_key, _ = get_vapid_keys()
    payload = json.dumps({
        "title": title,
        "body": body,
        "icon": "/icons/icon-192x192.png",
        **(data or {})
    })
    try:
        await asyncio.to_thread(
            webpush,
            subscription_info=subscription,
            data=payload,
            vapid_private_key=Vapid.from_pem(private_key.encode()),
            vapid_claims={"sub": config.VAPID_CLAIMS_EMAIL}
        )
    except WebPushException as e:
        if e.response is not None and e.response.status_code in (404, 410):
            raise PushGoneError(str(e)) from e
        raise
