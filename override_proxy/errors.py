
class OverrideProxyError(Exception):
    """Base class for override-proxy errors"""


class RuleConfigError(OverrideProxyError):
    """A rule could not be built from the arguments it was given"""


class ConfigError(OverrideProxyError):
    """Invalid proxy settings"""
