import pytest

from fieldops.errors import ValidationError
from fieldops.services.geospatial import haversine_m, validate_coordinates


def test_haversine_same_point_is_zero():
    assert haversine_m(21.5, 39.2, 21.5, 39.2) == 0.0


def test_haversine_is_symmetric():
    forward = haversine_m(30.0, 31.0, 30.02, 31.05)
    backward = haversine_m(30.02, 31.05, 30.0, 31.0)

    assert forward == pytest.approx(backward)


def test_one_degree_of_latitude_is_about_111_km():
    distance = haversine_m(0.0, 0.0, 1.0, 0.0)

    assert abs(distance - 111_195) < 1_000


def test_validate_coordinates_rejects_out_of_range():
    validate_coordinates(90.0, -180.0)

    with pytest.raises(ValidationError):
        validate_coordinates(91.0, 0.0)
    with pytest.raises(ValidationError):
        validate_coordinates(0.0, 181.0)
