# tracking_client.py
import logging
import random
import string
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import requests

from ab_testing import ABTestConfig, ActiveTest, Variant
from errors import NetworkError, NoActiveTest

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60
REQUEST_TIMEOUT = 5
DEFAULT_AD_TYPE = "banner"


def generate_user_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"user_{int(time.time() * 1000)}_{suffix}"


class ABTestSession:
    """
    Client side of an experiment: owns the user id and variant cookies,
    resolves the assignment and ships tracking events.

    Construct one per host application and pass it around; events are
    posted on a background executor so tracking never blocks or raises
    into the caller.
    """

    def __init__(self, config, base_url: str = "", http: Optional[requests.Session] = None,
                 executor: Optional[ThreadPoolExecutor] = None):
        if isinstance(config, dict):
            config = ABTestConfig.model_validate(config)
        self.config = config
        self.settings = config.global_settings
        self.active_test = ActiveTest.resolve(config.active_tests)
        self.base_url = base_url
        self.http = http or requests.Session()
        self._executor = executor or ThreadPoolExecutor(max_workers=2)
        self._user_id = None

    @classmethod
    def load(cls, config_url: str, base_url: str = "", http: Optional[requests.Session] = None, **kwargs):
        """Fetch the experiment config over HTTP and build a session from it"""
        http = http or requests.Session()
        try:
            response = http.get(urljoin(base_url, config_url), timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            document = response.json()
        except requests.RequestException as e:
            raise NetworkError(f"Could not load A/B test config: {e}") from e
        return cls(ABTestConfig.model_validate(document), base_url=base_url, http=http, **kwargs)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        """Wait for queued events to be sent"""
        self._executor.shutdown(wait=True)

    # Cookies

    @property
    def cookies(self):
        return self.http.cookies

    def _get_cookie(self, name: str) -> Optional[str]:
        self.cookies.clear_expired_cookies()
        return self.cookies.get(name)

    def _set_cookie(self, name: str, value: str):
        expires = int(time.time() + self.settings.cookie_expiration_days * SECONDS_PER_DAY)
        self.cookies.set(name, value, expires=expires, path="/")

    # Assignment

    @property
    def user_id(self) -> str:
        if self._user_id is None:
            user_id = self._get_cookie(self.settings.user_id_cookie)
            if not user_id:
                user_id = generate_user_id()
                self._set_cookie(self.settings.user_id_cookie, user_id)
            self._user_id = user_id
        return self._user_id

    def assign_variant(self) -> Optional[Variant]:
        """Variant from the cookie, or a fresh hash-based assignment"""
        if self.active_test is None:
            return None

        variant_id = self._get_cookie(self.settings.variant_cookie)
        variant = self.active_test.find_variant(variant_id)
        if variant is not None:
            return variant

        if variant_id:
            logger.debug("Variant cookie %r is not part of test %s, reassigning", variant_id, self.active_test.id)

        try:
            variant = self.active_test.assign(self.user_id)
        except NoActiveTest as e:
            logger.warning(f"Cannot assign variant: {e}")
            return None

        self._set_cookie(self.settings.variant_cookie, variant.id)
        return variant

    def get_test_config(self) -> Optional[Dict[str, Any]]:
        variant = self.assign_variant()
        if variant is None:
            return None

        test = self.active_test.test
        return {
            "testId": test.id,
            "testName": test.name,
            "variantId": variant.id,
            "variantName": variant.name,
            "config": variant.config,
            "metrics": test.metrics,
        }

    # Ads

    def should_show_ad(self, position: int) -> bool:
        test_config = self.get_test_config()
        if test_config is None:
            return False

        ad_config = test_config["config"]
        if position in (ad_config.get("positions") or []):
            return True

        interval = ad_config.get("showInterval")
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval <= 0:
            return False
        return position % interval == 0

    def get_ad_type(self) -> str:
        test_config = self.get_test_config()
        if test_config is None:
            return DEFAULT_AD_TYPE
        return test_config["config"].get("adType") or DEFAULT_AD_TYPE

    def get_reward(self) -> Optional[Any]:
        test_config = self.get_test_config()
        if test_config is None:
            return None
        return test_config["config"].get("reward") or None

    def show_ad(self, position: int) -> Optional[Dict[str, Any]]:
        """Track an impression and return the ad to render, if one is due here"""
        if not self.should_show_ad(position):
            return None

        ad_type = self.get_ad_type()
        reward = self.get_reward()
        self.track_event("ad_shown", {"questionNumber": position, "adType": ad_type, "reward": reward})
        return {"adType": ad_type, "reward": reward}

    # Tracking

    @property
    def tracking_url(self) -> str:
        endpoint = self.settings.tracking_endpoint
        return urljoin(self.base_url, endpoint) if self.base_url else endpoint

    def track_event(self, event_name: str, data: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Build an event for the current assignment and queue it for delivery"""
        test_config = self.get_test_config()
        if test_config is None:
            return None

        event = {
            "userId": self.user_id,
            "timestamp": int(time.time() * 1000),
            "eventName": event_name,
            "testData": {
                "testId": test_config["testId"],
                "variantId": test_config["variantId"],
                "variantName": test_config["variantName"],
            },
            "data": data or {},
        }

        if self.settings.analytics.enabled:
            try:
                self._executor.submit(self._send, event)
            except RuntimeError as e:
                logger.error(f"A/B test event dropped: {e}")
        return event

    def send(self, event: Dict[str, Any]):
        try:
            response = self.http.post(self.tracking_url, json=event, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(str(e)) from e

    def _send(self, event: Dict[str, Any]):
        try:
            self.send(event)
        except Exception as e:
            logger.error(f"Failed to send A/B test event: {str(e)}")

    def track_test_complete(self, data: Optional[Dict[str, Any]] = None):
        return self.track_event("test_complete", data)

    def track_share(self, platform: str):
        return self.track_event("share", {"platform": platform})

    def track_session_end(self, duration: float):
        return self.track_event("session_end", {"duration": duration})


def init_ab_test(config_url: str, base_url: str = "", **kwargs) -> Optional[ABTestSession]:
    """Load config, start a session and record the assignment; None on failure"""
    try:
        session = ABTestSession.load(config_url, base_url=base_url, **kwargs)
    except (NetworkError, ValueError) as e:
        logger.error(f"A/B test init failed: {str(e)}")
        return None

    test_config = session.get_test_config()
    if test_config:
        session.track_event("test_assigned", {
            "testId": test_config["testId"],
            "variantId": test_config["variantId"],
            "variantName": test_config["variantName"],
        })
    return session
