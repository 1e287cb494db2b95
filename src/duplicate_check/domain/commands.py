from dataclasses import dataclass
from datetime import date
from typing import Optional

from shared.domain.commands import Command


@dataclass(frozen=True)
class CheckPatientDuplicate(Command):
    nom: str
    prenoms: str
    date_naissance: date
    telephone: Optional[str] = None
    score_minimum: int = 70
    limit: int = 5
