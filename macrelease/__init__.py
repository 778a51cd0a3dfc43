"""macOS app release automation: build, notarize, staple, package, publish"""

__version__ = "0.4.0"
