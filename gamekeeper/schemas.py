# /gamekeeper/gamekeeper/schemas.py
#
# Request payloads accepted by the REST blueprint. Anything that does not
# validate is rejected with a ValidationError before it reaches a service.

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

GameStatus = Literal['wanted', 'downloading', 'downloaded']
UpdatePolicy = Literal['notify', 'auto', 'ignore']


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class ReleaseIn(CamelModel):
    guid: Optional[str] = None
    title: str = Field(min_length=1)
    indexer: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    seeders: Optional[int] = None
    categories: List[int] = Field(default_factory=list)
    published_at: Optional[datetime] = Field(default=None, alias='publishedAt')
    quality: Optional[str] = None
    download_url: str = Field(alias='downloadUrl', min_length=1)


class GrabIn(CamelModel):
    game_id: int = Field(alias='gameId')
    release: ReleaseIn
    dry_run: Optional[bool] = Field(default=None, alias='dryRun')


class GameCreate(CamelModel):
    igdb_id: Optional[int] = Field(default=None, alias='igdbId')
    title: str = Field(min_length=1)
    year: Optional[int] = None
    platform: Optional[str] = None
    cover_url: Optional[str] = Field(default=None, alias='coverUrl')
    summary: Optional[str] = None
    developer: Optional[str] = None
    publisher: Optional[str] = None
    stores: Optional[List[str]] = None
    status: GameStatus = 'wanted'
    monitored: bool = True
    library_id: Optional[int] = Field(default=None, alias='libraryId')
    update_policy: UpdatePolicy = Field(default='notify', alias='updatePolicy')


class GameUpdateIn(CamelModel):
    title: Optional[str] = Field(default=None, min_length=1)
    year: Optional[int] = None
    platform: Optional[str] = None
    cover_url: Optional[str] = Field(default=None, alias='coverUrl')
    summary: Optional[str] = None
    developer: Optional[str] = None
    publisher: Optional[str] = None
    stores: Optional[List[str]] = None
    status: Optional[GameStatus] = None
    monitored: Optional[bool] = None
    library_id: Optional[int] = Field(default=None, alias='libraryId')
    installed_version: Optional[str] = Field(default=None, alias='installedVersion')
    installed_quality: Optional[str] = Field(default=None, alias='installedQuality')
    update_policy: Optional[UpdatePolicy] = Field(default=None, alias='updatePolicy')


class PolicyIn(CamelModel):
    policy: UpdatePolicy


class CandidateIn(CamelModel):
    id: Optional[int] = None
    game_id: Optional[int] = Field(default=None, alias='gameId')
    title: Optional[str] = None
    year: Optional[int] = None
    platforms: List[str] = Field(default_factory=list)
    cover: Optional[str] = None
    summary: Optional[str] = None
    developer: Optional[str] = None
    publisher: Optional[str] = None


class MatchFolderIn(CamelModel):
    folder_path: str = Field(alias='folderPath', min_length=1)
    folder_name: Optional[str] = Field(default=None, alias='folderName')
    candidate: CandidateIn
    store: Optional[str] = None
    library_id: Optional[int] = Field(default=None, alias='libraryId')


class AutoMatchIn(CamelModel):
    parsed_title: str = Field(alias='parsedTitle', min_length=1)
    parsed_year: Optional[int] = Field(default=None, alias='parsedYear')
    folder_path: Optional[str] = Field(default=None, alias='folderPath')
    library_id: Optional[int] = Field(default=None, alias='libraryId')


class FolderIn(CamelModel):
    folder_path: str = Field(alias='folderPath', min_length=1)
    version: Optional[str] = None
    quality: Optional[str] = None


class ScanIn(CamelModel):
    library_id: Optional[int] = Field(default=None, alias='libraryId')
    auto: bool = False


class LibraryIn(CamelModel):
    name: str = Field(min_length=1)
    path: str = Field(min_length=1)
    platform: Optional[str] = None
    monitored: bool = True
    download_enabled: bool = Field(default=True, alias='downloadEnabled')
    download_category: Optional[str] = Field(default=None, alias='downloadCategory')
    priority: int = 0


class LibraryUpdateIn(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1)
    path: Optional[str] = Field(default=None, min_length=1)
    platform: Optional[str] = None
    monitored: Optional[bool] = None
    download_enabled: Optional[bool] = Field(default=None, alias='downloadEnabled')
    download_category: Optional[str] = Field(default=None, alias='downloadCategory')
    priority: Optional[int] = None


class ImportDownloadIn(CamelModel):
    game_id: int = Field(alias='gameId')


def parse_payload(schema, payload):
    """Validates a request body against a schema, raising ValidationError on failure."""
    if payload is None:
        raise ValidationError("Request body must be JSON")
    try:
        return schema.model_validate(payload)
    except PydanticValidationError as e:
        details = [
            {'field': '.'.join(str(p) for p in err['loc']), 'message': err['msg']}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {schema.__name__} payload", details=details) from e
