import pytest

from plant_dispatch.data.distance_repository import DistanceRepository
from plant_dispatch.data.location_repository import LocationRepository
from plant_dispatch.models.domain import Location
from plant_dispatch.services.distances.builder import (
    DistanceMatrixBuilder,
    compute_floor_pairs,
    expected_pair_count,
    group_by_floor,
)


def _location(name: str, x: float, y: float, floor: int = 1, external_id: str | None = None) -> Location:
    return Location(
        location_id=name,
        name=name,
        external_id=external_id if external_id is not None else f"ext-{name}",
        x=x,
        y=y,
        floor=floor,
    )


def _location_row(row_id: int, name: str, x: float, y: float, floor: int) -> dict:
    return {"id": row_id, "name": name, "deskly_id": f"ext-{name}", "x_value": x, "y_value": y, "floor": floor}


@pytest.mark.parametrize("n, expected", [(0, 0), (1, 1), (2, 3), (3, 6), (10, 55)])
def test_expected_pair_count(n, expected):
    assert expected_pair_count(n) == expected


def test_compute_floor_pairs_three_locations():
    a, b, c = _location("A", 0, 0), _location("B", 3, 4), _location("C", 3, 4)

    pairs = compute_floor_pairs(1, [a, b, c])

    assert len(pairs) == 6
    distances = {(p.from_location.name, p.to_location.name): p.distance for p in pairs}
    assert distances[("A", "B")] == pytest.approx(5.0)
    assert distances[("A", "C")] == pytest.approx(5.0)
    assert distances[("B", "C")] == pytest.approx(0.0)
    assert [p.distance for p in pairs if p.is_self_pair] == [0.0, 0.0, 0.0]
    # Undirected pairs come first, self-pairs last
    assert [p.is_self_pair for p in pairs] == [False, False, False, True, True, True]


def test_compute_floor_pairs_is_symmetric_in_value():
    a, b = _location("A", 1, 1), _location("B", 4, 5)

    forward = compute_floor_pairs(1, [a, b])[0].distance
    backward = compute_floor_pairs(1, [b, a])[0].distance

    assert forward == pytest.approx(backward) == pytest.approx(5.0)


def test_group_by_floor_drops_locations_without_external_id():
    locations = [
        _location("A", 0, 0, floor=1),
        _location("B", 1, 1, floor=2),
        _location("C", 2, 2, floor=1, external_id=""),
        _location("D", 3, 3, floor=2, external_id="   "),
    ]

    grouped = group_by_floor(locations)

    assert {floor: [loc.name for loc in items] for floor, items in grouped.items()} == {1: ["A"], 2: ["B"]}


def test_rebuild_replaces_pairs_per_floor(fake_db):
    fake_db.seed(
        "location",
        [
            _location_row(1, "A", 0, 0, 1),
            _location_row(2, "B", 3, 4, 1),
            _location_row(3, "C", 3, 4, 1),
            _location_row(4, "D", 0, 0, 2),
        ],
    )
    fake_db.seed("distance_pairs", [{"from_id": "old", "to_id": "old", "distance": 0, "floor": 1}])
    builder = DistanceMatrixBuilder(LocationRepository(fake_db), DistanceRepository(fake_db))

    report = builder.rebuild()

    assert not report.aborted
    assert report.pairs_by_floor == {1: 6, 2: 1}
    assert report.total_pairs == 7
    stored = fake_db.tables["distance_pairs"]
    assert len(stored) == 7
    assert all(row["from_id"] != "old" for row in stored)


def test_rebuild_continues_after_a_floor_fails(fake_db):
    fake_db.seed("location", [_location_row(1, "A", 0, 0, 1), _location_row(2, "B", 1, 1, 2), _location_row(3, "C", 2, 2, 2)])
    fake_db.fail("distance_pairs", "insert", times=1)
    builder = DistanceMatrixBuilder(LocationRepository(fake_db), DistanceRepository(fake_db))

    report = builder.rebuild()

    assert list(report.failed_floors) == [1]
    assert report.pairs_by_floor == {2: 3}


def test_rebuild_aborts_when_locations_unavailable(fake_db):
    fake_db.fail("location", "select")
    builder = DistanceMatrixBuilder(LocationRepository(fake_db), DistanceRepository(fake_db))

    report = builder.rebuild()

    assert report.aborted
    assert "locations" in report.error
    assert "distance_pairs" not in fake_db.tables


def test_analyze_reports_expected_counts(fake_db):
    fake_db.seed("location", [_location_row(i, f"L{i}", i, i, 1 if i < 4 else 2) for i in range(1, 6)])
    builder = DistanceMatrixBuilder(LocationRepository(fake_db), DistanceRepository(fake_db))

    analysis = builder.analyze()

    assert [(f.floor, f.locations, f.undirected_pairs, f.self_pairs, f.total_pairs) for f in analysis.floors] == [
        (1, 3, 3, 3, 6),
        (2, 2, 1, 2, 3),
    ]
    assert analysis.total_locations == 5
    assert analysis.total_pairs == 9
