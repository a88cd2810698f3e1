"""
Azure Speech Service module.

Issues short-lived Azure Speech tokens so the browser can run speech-to-text
on the participant's microphone. Transcripts are posted back to the server
and resolved into yes/no answers by services.answer_recognition.
"""

from typing import Dict, Optional

import requests

import config

# Browser STT locale per recognition language
_LOCALES = {"en": "en-US", "pl": "pl-PL"}


class AzureSpeechService:
    """Provides tokens for browser speech recognition (STT)."""

    def __init__(self, speech_key: Optional[str] = None, speech_region: Optional[str] = None):
        self.speech_key = config.SPEECH_KEY if speech_key is None else speech_key
        self.speech_region = config.SPEECH_REGION if speech_region is None else speech_region

    def token_url(self) -> str:
        if config.SPEECH_ENDPOINT:
            return config.SPEECH_ENDPOINT.rstrip("/") + "/sts/v1.0/issueToken"
        return f"https://{self.speech_region}.api.cognitive.microsoft.com/sts/v1.0/issueToken"

    def get_speech_token(self) -> Dict[str, str]:
        """
        Get an access token for Azure Speech Service (STT).

        Returns:
            dict: 'token', 'region' and the 'locale' the browser should recognize

        Raises:
            ValueError: If SPEECH_KEY/SPEECH_REGION are not configured, or Azure rejects the key
            requests.Timeout: If the request times out
            requests.RequestException: If the request fails
        """
        if not (self.speech_key and self.speech_key.strip()):
            raise ValueError(
                "Speech service is not configured. Set SPEECH_KEY in your environment (e.g. in .env)."
            )
        if not (self.speech_region and self.speech_region.strip()):
            raise ValueError(
                "Speech region is not set. Set SPEECH_REGION in your environment (e.g. westeurope)."
            )
        headers = {"Ocp-Apim-Subscription-Key": self.speech_key}

        try:
            resp = requests.post(self.token_url(), headers=headers, timeout=5)
            if resp.status_code == 401:
                raise ValueError(
                    "Azure returned 401 Permission Denied. Check that SPEECH_KEY is a key from an Azure "
                    "Speech resource and SPEECH_REGION matches that resource's region."
                )
            resp.raise_for_status()
            token = resp.text.strip()
            if not token:
                raise ValueError("Empty token received from Azure Speech Service")
            return {
                "token": token,
                "region": self.speech_region,
                "locale": _LOCALES.get(config.RECOGNITION_LANGUAGE, "en-US"),
            }
        except ValueError:
            raise
        except requests.Timeout:
            raise requests.Timeout("Request to Azure Speech Service timed out")
        except requests.RequestException as e:
            raise requests.RequestException(f"Failed to get speech token: {e}")


# Lazy singleton: initialized on first use to avoid loading at import time
_speech_service: Optional[AzureSpeechService] = None


def get_speech_service() -> AzureSpeechService:
    """Return the Speech service instance, creating it on first call (lazy init)."""
    global _speech_service
    if _speech_service is None:
        _speech_service = AzureSpeechService()
    return _speech_service
