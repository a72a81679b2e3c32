"""Screenshot capture and DOM scraping."""

from sitewarden.capture.scraper import Scraper
from sitewarden.capture.screenshots import CaptureService

__all__ = ["CaptureService", "Scraper"]
