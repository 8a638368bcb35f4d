from localid.consent.broker import DEFAULT_CONSENT_TIMEOUT, ConsentBroker

__all__ = ["DEFAULT_CONSENT_TIMEOUT", "ConsentBroker"]
