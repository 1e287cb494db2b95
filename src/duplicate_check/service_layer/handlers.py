from duplicate_check.domain.commands import CheckPatientDuplicate
from duplicate_check.domain.model import DuplicateCheckResult
from duplicate_check.service_layer.duplicate_checker import DuplicateChecker


def check_patient_duplicate(
    command: CheckPatientDuplicate,
    checker: DuplicateChecker,
) -> DuplicateCheckResult:
    return checker.check_duplicate(
        nom=command.nom,
        prenoms=command.prenoms,
        date_naissance=command.date_naissance,
        telephone=command.telephone,
        score_minimum=command.score_minimum,
        limit=command.limit,
    )
