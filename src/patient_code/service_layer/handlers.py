import logging
from typing import Any, Dict

from patient_code import views
from patient_code.domain.commands import GeneratePatientCode, GetSequenceStats
from patient_code.domain.model import CodeGenerationResult
from patient_code.service_layer.code_generator import PatientCodeGenerator
from patient_code.service_layer.unit_of_work import AbstractSequenceUnitOfWork

logger = logging.getLogger(__name__)


def generate_patient_code(
    command: GeneratePatientCode,
    generator: PatientCodeGenerator,
) -> CodeGenerationResult:
    """Allocate the next patient code for the command's establishment."""
    result = generator.generate_code(command.tenant_code)
    logger.info(f"Issued patient code {result.code_patient} ({result.source})")
    return result


def get_sequence_stats(
    command: GetSequenceStats,
    uow: AbstractSequenceUnitOfWork,
) -> Dict[str, Any]:
    return views.get_sequence_stats(command.tenant_code, uow, command.year)
