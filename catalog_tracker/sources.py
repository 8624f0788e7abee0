# catalog_tracker/sources.py
"""Listing sources and seller scope resolution.

The storefront scraper itself is an external program. It is run as a
subprocess that writes a JSON array of listings; this module runs it, watches
its output and loads the dump.
"""
import csv
import io
import json
import os
import re
import shlex
import signal
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import requests
from pydantic import ValidationError

from .config import SELLER_NAME, SELLER_PHONES, SELLERS_SHEET_URL, TARGET_PHONE_NUMBER
from .errors import AuthRequired, SourceUnavailable
from .schemas import EnrichedListing, SellerConfig
from .utils import get_logger, retry

logger = get_logger(__name__)

AUTH_MARKERS = ("scan QR code", "QR code")
CATALOG_PHONE_RE = re.compile(r"/catalog/(\d+)")


@dataclass
class ProcessResult:
    exit_code: int
    output: str

    @property
    def ok(self):
        return self.exit_code == 0

    @property
    def auth_required(self):
        return any(marker in self.output for marker in AUTH_MARKERS)


class ProcessTask:
    """A running subprocess whose stdout/stderr is streamed line by line."""

    def __init__(self, command, cwd=None, on_line: Optional[Callable[[str], None]] = None):
        if isinstance(command, str):
            command = shlex.split(command)
        self.command = list(command)
        self.cwd = cwd
        self.on_line = on_line
        self._process = None
        self._lock = threading.Lock()

    def run(self) -> ProcessResult:
        lines = []
        with self._lock:
            self._process = subprocess.Popen(
                self.command,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                env=dict(os.environ),
            )
        try:
            for line in iter(self._process.stdout.readline, ""):
                lines.append(line)
                if self.on_line:
                    self.on_line(line.rstrip("\n"))
            self._process.stdout.close()
            exit_code = self._process.wait()
        finally:
            with self._lock:
                self._process = None
        return ProcessResult(exit_code=exit_code, output="".join(lines))

    def terminate(self):
        """Deliver SIGTERM to the process if it is still running."""
        with self._lock:
            if self._process is None or self._process.poll() is not None:
                return False
            self._process.send_signal(signal.SIGTERM)
            return True


def load_listings_file(path) -> List[EnrichedListing]:
    path = Path(path)
    if not path.exists():
        raise SourceUnavailable(f"listings dump not found at {path}")
    try:
        with open(path, "r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise SourceUnavailable(f"cannot read listings dump {path}: {e}") from e
    if not isinstance(parsed, list):
        raise SourceUnavailable(f"{path} must contain a JSON array of listings")
    listings = []
    for index, item in enumerate(parsed):
        try:
            listings.append(EnrichedListing.model_validate(item))
        except ValidationError as e:
            logger.warning("Ignoring malformed record #%d in %s: %s", index, path, e)
    return listings


class JsonFileSource:
    """Reads a dump produced by an earlier scraper run."""

    def __init__(self, path):
        self.path = path

    def get_raw_listings(self, seller_scope=None) -> List[EnrichedListing]:
        listings = load_listings_file(self.path)
        if seller_scope:
            phones = {s.phone for s in seller_scope}
            listings = [l for l in listings if l.seller_phone in phones]
        logger.info("Loaded %d listings from %s", len(listings), self.path)
        return listings

    def stop(self):
        return False


class ScraperCommandSource:
    """Runs the external scraper, then loads the dump it wrote."""

    def __init__(self, command, output_path, cwd=None, on_line=None):
        self.command = command
        self.output_path = output_path
        self.cwd = cwd
        self.on_line = on_line
        self._task = None

    def get_raw_listings(self, seller_scope=None) -> List[EnrichedListing]:
        self._task = ProcessTask(self.command, cwd=self.cwd, on_line=self.on_line or self._log_line)
        try:
            result = self._task.run()
        except OSError as e:
            raise SourceUnavailable(f"cannot start scraper {self.command!r}: {e}") from e
        finally:
            self._task = None
        if result.auth_required:
            raise AuthRequired("scraper needs a QR code login")
        if not result.ok:
            raise SourceUnavailable(f"scraper exited with code {result.exit_code}")
        return JsonFileSource(self.output_path).get_raw_listings(seller_scope)

    def stop(self):
        task = self._task
        return task.terminate() if task else False

    @staticmethod
    def _log_line(line):
        logger.info("[scraper] %s", line)


def to_csv_export_url(url: str) -> str:
    """Turn a Google Sheets share URL into its CSV export URL."""
    if "docs.google.com/spreadsheets" not in url or "/export?" in url:
        return url
    id_match = re.search(r"/d/([^/]+)", url)
    if not id_match:
        return url
    gid_match = re.search(r"[?#]gid=(\d+)", url)
    gid = gid_match.group(1) if gid_match else "0"
    return f"https://docs.google.com/spreadsheets/d/{id_match.group(1)}/export?format=csv&gid={gid}"


def _cell(row, key):
    if key is None:
        return None
    return (row.get(key) or "").strip() or None


def parse_sellers_csv(text: str) -> List[SellerConfig]:
    """Parse seller rows keyed by the phone number embedded in the catalogue link."""
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        return []
    headers = {h.strip().lower(): h for h in reader.fieldnames if h}
    url_key = headers.get("catalogue_link") or headers.get("catalogue_url")
    if url_key is None:
        logger.error('Sheet has no "catalogue_link" or "catalogue_url" column')
        return []
    name_key, city_key = headers.get("name"), headers.get("city")

    sellers = {}
    for row in reader:
        raw_url = (row.get(url_key) or "").strip()
        match = CATALOG_PHONE_RE.search(raw_url)
        if not match or match.group(1) in sellers:
            continue
        phone = match.group(1)
        sellers[phone] = SellerConfig(
            phone=phone,
            name=_cell(row, name_key),
            city=_cell(row, city_key),
            catalogue_url=raw_url,
        )
    return list(sellers.values())


@retry(requests.RequestException, tries=3, delay=2, backoff=2)
def _fetch_sheet(url):
    res = requests.get(url, timeout=30)
    res.raise_for_status()
    return res.text


def fetch_sellers_from_sheet(sheet_url: str) -> List[SellerConfig]:
    csv_url = to_csv_export_url(sheet_url)
    logger.info("Fetching sellers from sheet CSV: %s", csv_url)
    try:
        text = _fetch_sheet(csv_url)
    except requests.RequestException as e:
        logger.error("Failed to fetch sellers sheet: %s", e)
        return []
    sellers = parse_sellers_csv(text)
    logger.info("Parsed %d unique sellers from sheet", len(sellers))
    return sellers


def resolve_seller_configs(sheet_url=SELLERS_SHEET_URL, seller_phones=SELLER_PHONES,
                           target_phone=TARGET_PHONE_NUMBER, seller_name=SELLER_NAME) -> List[SellerConfig]:
    """Sheet first, then the comma-separated phone list, then the single target seller."""
    if sheet_url:
        sellers = fetch_sellers_from_sheet(sheet_url)
        if sellers:
            return sellers
    phones = [p.strip() for p in (seller_phones or "").split(",") if p.strip()]
    if phones:
        return [SellerConfig(phone=p) for p in phones]
    if target_phone:
        return [SellerConfig(phone=target_phone, name=seller_name)]
    return []
