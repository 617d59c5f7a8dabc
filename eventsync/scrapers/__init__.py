"""
Scraper registry.

To add a new source:
1. Write <source_key>.py with a BaseScraper subclass setting source and source_name
2. Give it a [sources.<source_key>] section in config.toml
3. Import and register it in the SCRAPERS dict below
"""

from eventsync.scrapers.base import BaseScraper
from eventsync.scrapers.feverup import FeverUpScraper
from eventsync.scrapers.marriner import MarrinerScraper
from eventsync.scrapers.ticketmaster import TicketmasterScraper
from eventsync.scrapers.whatson import WhatsOnScraper

SCRAPERS: dict[str, type[BaseScraper]] = {
    "marriner": MarrinerScraper,
    "ticketmaster": TicketmasterScraper,
    "whatson": WhatsOnScraper,
    "feverup": FeverUpScraper,
}
