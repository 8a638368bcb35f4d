from localid.protocols.consent import ConsentDecisionHandler, ConsentSurface

__all__ = ["ConsentDecisionHandler", "ConsentSurface"]
