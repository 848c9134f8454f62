# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import concurrent.futures
import logging
import re
import time
from typing import Callable, Dict, Optional

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shared.api import BibleVerse

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.scripture.api.bible/v1"
REQUEST_TIMEOUT = 10  # seconds

MAX_ATTEMPTS = 3
INITIAL_DELAY_SECONDS = 0.5
MAX_DELAY_SECONDS = 5.0

BIBLE_VERSIONS = {
    "en": "de4e12af7f28f599-02",
    "hi": "1e8ab327edbce67f-01",
    "ml": "3ea0147e32eebe47-01",
}

TRANSLATION_NAMES = {
    "en": "King James Version (KJV)",
    "hi": "Indian Revised Version Hindi 2019",
    "ml": "Indian Revised Version Malayalam 2025",
}

BOOK_CODES = {
    # Old Testament
    "Genesis": "GEN", "Exodus": "EXO", "Leviticus": "LEV", "Numbers": "NUM",
    "Deuteronomy": "DEU", "Joshua": "JOS", "Judges": "JDG", "Ruth": "RUT",
    "1 Samuel": "1SA", "2 Samuel": "2SA", "1 Kings": "1KI", "2 Kings": "2KI",
    "1 Chronicles": "1CH", "2 Chronicles": "2CH", "Ezra": "EZR", "Nehemiah": "NEH",
    "Esther": "EST", "Job": "JOB", "Psalms": "PSA", "Proverbs": "PRO",
    "Ecclesiastes": "ECC", "Song of Solomon": "SNG", "Isaiah": "ISA",
    "Jeremiah": "JER", "Lamentations": "LAM", "Ezekiel": "EZK", "Daniel": "DAN",
    "Hosea": "HOS", "Joel": "JOL", "Amos": "AMO", "Obadiah": "OBA", "Jonah": "JON",
    "Micah": "MIC", "Nahum": "NAM", "Habakkuk": "HAB", "Zephaniah": "ZEP",
    "Haggai": "HAG", "Zechariah": "ZEC", "Malachi": "MAL",
    # New Testament
    "Matthew": "MAT", "Mark": "MRK", "Luke": "LUK", "John": "JHN", "Acts": "ACT",
    "Romans": "ROM", "1 Corinthians": "1CO", "2 Corinthians": "2CO",
    "Galatians": "GAL", "Ephesians": "EPH", "Philippians": "PHP",
    "Colossians": "COL", "1 Thessalonians": "1TH", "2 Thessalonians": "2TH",
    "1 Timothy": "1TI", "2 Timothy": "2TI", "Titus": "TIT", "Philemon": "PHM",
    "Hebrews": "HEB", "James": "JAS", "1 Peter": "1PE", "2 Peter": "2PE",
    "1 John": "1JN", "2 John": "2JN", "3 John": "3JN", "Jude": "JUD",
    "Revelation": "REV",
    # Aliases
    "Psalm": "PSA", "Song of Songs": "SNG", "Canticles": "SNG",
    "1 Sam": "1SA", "2 Sam": "2SA", "1 Kgs": "1KI", "2 Kgs": "2KI",
    "1 Chr": "1CH", "2 Chr": "2CH", "1 Cor": "1CO", "2 Cor": "2CO",
    "1 Thess": "1TH", "2 Thess": "2TH", "1 Tim": "1TI", "2 Tim": "2TI",
    "1 Pet": "1PE", "2 Pet": "2PE", "Rev": "REV", "Revelations": "REV",
}

_REFERENCE_PATTERN = re.compile(r"^((?:\d\s)?[A-Za-z\s]+?)\s+(\d+):(\d+)(?:-\d+)?$")
_TAGS = re.compile(r"<[^>]*>")
_FOOTNOTE_MARKERS = re.compile(r"\[\d+\]")
_LEADING_VERSE_NUMBER = re.compile(r"^\s*\d+\s*")
_WHITESPACE = re.compile(r"\s+")


class BibleApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def parse_reference(reference: str) -> str:
    """
    Converts a human-readable reference into an API.Bible verse id.

    Args:
        reference (str): A reference such as "John 3:16" or "1 John 4:8-10".

    Returns:
        str: The verse id, e.g. "JHN.3.16". Ranges resolve to the first verse.

    Raises:
        ValueError: If the reference is malformed or the book is unknown.
    """
    match = _REFERENCE_PATTERN.match(reference.strip())
    if not match:
        raise ValueError(f"Invalid reference format: {reference}")
    book, chapter, verse = match.groups()
    book_code = BOOK_CODES.get(_WHITESPACE.sub(" ", book).strip())
    if not book_code:
        raise ValueError(f"Unknown book name: {book}")
    return f"{book_code}.{chapter}.{verse}"


def clean_verse_text(text: str) -> str:
    cleaned = _TAGS.sub("", text)
    cleaned = _FOOTNOTE_MARKERS.sub("", cleaned)
    cleaned = _LEADING_VERSE_NUMBER.sub("", cleaned)
    cleaned = cleaned.replace("*", "")
    return _WHITESPACE.sub(" ", cleaned).strip()


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, BibleApiError):
        status = error.status_code
        return status is not None and (status == 429 or status >= 500)
    return isinstance(error, requests.exceptions.RequestException)


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Bible API attempt %d failed (%s), retrying in %.1fs",
        retry_state.attempt_number,
        retry_state.outcome.exception(),
        retry_state.next_action.sleep,
    )


def with_retry(
    operation: Callable[[], BibleVerse],
    max_attempts: int = MAX_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
) -> BibleVerse:
    """Runs operation, retrying 429/5xx/network failures with exponential backoff."""
    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=INITIAL_DELAY_SECONDS, max=MAX_DELAY_SECONDS),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    return retrying(operation)


class BibleApiClient:
    """Fetches verse text from API.Bible."""

    def __init__(
        self,
        api_key: str,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not api_key:
            raise ValueError("BIBLE_API_KEY is required for BibleApiClient")
        self.api_key = api_key
        self.session = session or requests.Session()
        self.sleep = sleep

    def _fetch_once(self, reference: str, language: str) -> BibleVerse:
        verse_id = parse_reference(reference)
        url = f"{API_BASE_URL}/bibles/{BIBLE_VERSIONS[language]}/verses/{verse_id}"
        params = {
            "content-type": "text",
            "include-notes": "false",
            "include-titles": "false",
            "include-chapter-numbers": "false",
            "include-verse-numbers": "false",
        }
        response = self.session.get(
            url,
            params=params,
            headers={"api-key": self.api_key},
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code != 200:
            raise BibleApiError(
                f"API.Bible request failed: {response.status_code}",
                status_code=response.status_code,
            )
        content = (response.json().get("data") or {}).get("content") or ""
        text = clean_verse_text(content)
        if not text:
            raise BibleApiError(f"No text returned for {reference}")
        return BibleVerse(
            reference=reference,
            text=text,
            translation=TRANSLATION_NAMES[language],
            language=language,
        )

    def fetch_verse(self, reference: str, language: str = "en") -> BibleVerse:
        """
        Fetches one verse in the given language.

        Raises:
            ValueError: If the language or reference is not supported.
            BibleApiError: If the API keeps failing or returns no text.
        """
        if language not in BIBLE_VERSIONS:
            raise ValueError(f"Unsupported language: {language}")
        parse_reference(reference)
        return with_retry(lambda: self._fetch_once(reference, language), sleep=self.sleep)

    def fetch_verse_all_languages(self, reference: str) -> Dict[str, BibleVerse]:
        """English is required; Hindi and Malayalam fall back to empty text."""
        with concurrent.futures.ThreadPoolExecutor(max_workers=len(BIBLE_VERSIONS)) as executor:
            futures = {
                language: executor.submit(self.fetch_verse, reference, language)
                for language in BIBLE_VERSIONS
            }
            verses = {"en": futures["en"].result()}
            for language in ("hi", "ml"):
                try:
                    verses[language] = futures[language].result()
                except (BibleApiError, requests.exceptions.RequestException) as e:
                    logger.warning("Failed to fetch %s verse for %s: %s", language, reference, e)
                    verses[language] = BibleVerse(
                        reference=reference,
                        text="",
                        translation=TRANSLATION_NAMES[language],
                        language=language,
                    )
        return verses
