"""Builds the object graph from configuration."""

from dataclasses import dataclass
from typing import Optional

import config
import db
from assembler import ListingAssembler
from conversation import ConversationStateMachine
from db import ListingRepo
from media import MediaAcquirer
from scraper import MotorcycleScraper
from storage import ImageStorage, LocalImageStorage


@dataclass
class Services:
    repo: ListingRepo
    scraper: MotorcycleScraper
    media: MediaAcquirer
    assembler: ListingAssembler
    conversations: ConversationStateMachine


def build_services(db_path: str = config.DB_PATH,
                   storage: Optional[ImageStorage] = None,
                   scraper: Optional[MotorcycleScraper] = None,
                   fetch_locally: bool = config.MEDIA_FETCH_LOCALLY) -> Services:
    db.init_db(db_path)
    repo = ListingRepo(db_path)
    scraper = scraper or MotorcycleScraper()
    storage = storage or LocalImageStorage(config.MEDIA_ROOT, config.MEDIA_BASE_URL)
    media = MediaAcquirer(storage, repo=repo, fetch_locally=fetch_locally)
    assembler = ListingAssembler(repo, scraper, media, currency=config.DEFAULT_CURRENCY)
    conversations = ConversationStateMachine(repo)
    return Services(
        repo=repo,
        scraper=scraper,
        media=media,
        assembler=assembler,
        conversations=conversations,
    )
