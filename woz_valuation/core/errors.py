"""Error taxonomy shared by the source adapters and the service layer."""


class ValuationError(Exception):
    """Base class for everything the valuation pipeline raises on purpose."""


class InvalidInput(ValuationError):
    """Address or postal code failed shape validation."""


class SourceUnavailable(ValuationError):
    """An upstream tier could not be reached or gave an unusable response."""

    def __init__(self, tier: str, message: str = "source unavailable"):
        super().__init__(f"{tier}: {message}")
        self.tier = tier


class ParseFailure(SourceUnavailable):
    """Content was retrieved but no plausible value could be extracted."""

    def __init__(self, tier: str, raw_text: str = ""):
        super().__init__(tier, "no plausible value in retrieved content")
        self.raw_text = raw_text


class ConfigurationGap(SourceUnavailable):
    """A credential needed by a source is not configured."""

    def __init__(self, tier: str, credential: str):
        super().__init__(tier, f"{credential} not configured")
        self.credential = credential
