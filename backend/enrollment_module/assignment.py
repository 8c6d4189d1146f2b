"""First-fit class placement for approved applicants.

The functions here work on plain snapshots and never touch the database.
The service layer loads a snapshot, asks for a plan and writes the plan back
inside one transaction.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from .models import ApplicationStatus, EnrollmentRoute


class AssignmentError(Exception):
    pass


class ClassFullError(AssignmentError):
    def __init__(self, class_id: str, occupancy: int, max_size: int):
        super().__init__(f"Class {class_id} is full ({occupancy}/{max_size})")
        self.class_id = class_id
        self.occupancy = occupancy
        self.max_size = max_size


class UnknownClassError(AssignmentError):
    def __init__(self, class_id: str):
        super().__init__(f"Class {class_id} does not exist")
        self.class_id = class_id


class AlreadyPlacedError(AssignmentError):
    def __init__(self, application_id: str, class_id: str):
        super().__init__(f"Application {application_id} already holds class {class_id}")
        self.application_id = application_id
        self.class_id = class_id


@dataclass(frozen=True)
class ApplicantSnapshot:
    id: str
    is_priority: bool
    enrollment_route: EnrollmentRoute
    status: ApplicationStatus = ApplicationStatus.APPROVED
    class_id: str | None = None


@dataclass(frozen=True)
class ClassSnapshot:
    id: str
    name: str
    max_size: int


@dataclass(frozen=True)
class Placement:
    application_id: str
    class_id: str
    status: ApplicationStatus = ApplicationStatus.ASSIGNED


def placement_sort_key(applicant: ApplicantSnapshot) -> tuple[int, int]:
    """Priority applicants first, then in-route before out-of-route."""
    return (
        0 if applicant.is_priority else 1,
        0 if applicant.enrollment_route == EnrollmentRoute.IN_ROUTE else 1,
    )


def order_for_placement(applicants: Iterable[ApplicantSnapshot]) -> list[ApplicantSnapshot]:
    # sorted() is stable, so ties keep their input order.
    return sorted(applicants, key=placement_sort_key)


def count_occupancy(
    applicants: Iterable[ApplicantSnapshot], classes: Iterable[ClassSnapshot]
) -> dict[str, int]:
    """Derive how many applicants currently hold each class.

    Every applicant carrying a ``class_id`` counts toward that class whatever
    its status. Both the automatic and the manual path use this, so they always
    agree on whether a class is full.
    """
    occupancy = {cls.id: 0 for cls in classes}
    for applicant in applicants:
        if applicant.class_id is not None and applicant.class_id in occupancy:
            occupancy[applicant.class_id] += 1
    return occupancy


def eligible_applicants(applicants: Iterable[ApplicantSnapshot]) -> list[ApplicantSnapshot]:
    """Keep APPROVED applicants only, refusing any that already hold a class."""
    eligible = []
    for applicant in applicants:
        if applicant.status != ApplicationStatus.APPROVED:
            continue
        if applicant.class_id is not None:
            raise AlreadyPlacedError(applicant.id, applicant.class_id)
        eligible.append(applicant)
    return eligible


def plan_placements(
    applicants: Iterable[ApplicantSnapshot],
    classes: Sequence[ClassSnapshot],
    occupancy: Mapping[str, int],
) -> list[Placement]:
    """Place approved applicants into classes, first fit.

    Applicants are visited in placement order (see ``placement_sort_key``) and
    each goes to the first class in ``classes`` whose running occupancy is
    below ``max_size``. Applicants that fit nowhere are left out of the result;
    callers find them with ``unplaced``.

    ``occupancy`` is the count before this run and is not modified. A class
    missing from it is treated as empty.

    Returns placements in the order the applicants were processed.
    """
    running = {cls.id: occupancy.get(cls.id, 0) for cls in classes}
    placements: list[Placement] = []

    for applicant in order_for_placement(eligible_applicants(applicants)):
        for cls in classes:
            if running[cls.id] < cls.max_size:
                running[cls.id] += 1
                placements.append(Placement(application_id=applicant.id, class_id=cls.id))
                break

    return placements


def unplaced(applicants: Iterable[ApplicantSnapshot], placements: Iterable[Placement]) -> list[str]:
    placed_ids = {placement.application_id for placement in placements}
    return [
        applicant.id
        for applicant in applicants
        if applicant.status == ApplicationStatus.APPROVED and applicant.id not in placed_ids
    ]


def check_capacity(cls: ClassSnapshot, occupancy: Mapping[str, int]) -> None:
    current = occupancy.get(cls.id, 0)
    if current >= cls.max_size:
        raise ClassFullError(cls.id, current, cls.max_size)


def validate_placements(
    placements: Iterable[Placement],
    classes: Iterable[ClassSnapshot],
    occupancy: Mapping[str, int],
) -> dict[str, int]:
    """Check a batch of placements against capacity.

    Raises ``UnknownClassError`` for a class id outside ``classes`` and
    ``ClassFullError`` as soon as the batch would overflow a class. Returns the
    occupancy after the batch.
    """
    by_id = {cls.id: cls for cls in classes}
    running = {class_id: occupancy.get(class_id, 0) for class_id in by_id}

    for placement in placements:
        cls = by_id.get(placement.class_id)
        if cls is None:
            raise UnknownClassError(placement.class_id)
        check_capacity(cls, running)
        running[cls.id] += 1

    return running
