"""
Unit tests for input validation.
"""

import pytest
import numpy as np

from navgraph.core.exceptions import (
    DimensionMismatchError,
    InvalidConfigurationError,
    InvalidLabelError,
    InvalidVectorError,
    NavGraphError,
    ValidationError,
)
from navgraph.utils.validation import (
    as_matrix,
    as_vector,
    validate_dimension,
    validate_k,
    validate_label,
    validate_positive,
)


class TestValidateLabel:

    @pytest.mark.parametrize("label", [0, 1, 2 ** 64 - 1, np.uint64(5), np.int32(3)])
    def test_valid(self, label):
        assert validate_label(label) == int(label)
        assert type(validate_label(label)) is int

    @pytest.mark.parametrize("label", [-1, 2 ** 64, 1.0, "7", None, True, np.bool_(False)])
    def test_invalid(self, label):
        with pytest.raises(InvalidLabelError):
            validate_label(label)


class TestValidatePositive:

    def test_dimension(self):
        assert validate_dimension(128) == 128

    @pytest.mark.parametrize("value", [0, -1, 1.5, "8", True])
    def test_invalid_dimension(self, value):
        with pytest.raises(InvalidConfigurationError):
            validate_dimension(value)

    def test_bounds(self):
        assert validate_positive("x", 0, min_value=0) == 0
        with pytest.raises(InvalidConfigurationError, match="too large"):
            validate_positive("x", 11, max_value=10)


class TestValidateK:

    def test_zero_allowed(self):
        assert validate_k(0) == 0

    @pytest.mark.parametrize("k", [-1, 2.0, "3", False])
    def test_invalid(self, k):
        with pytest.raises(ValidationError):
            validate_k(k)


class TestAsVector:

    def test_converts_to_float32_copy(self):
        data = np.array([1, 2, 3], dtype=np.int64)
        vector = as_vector(data, 3)

        assert vector.dtype == np.float32
        vector[0] = 10
        assert data[0] == 1

    def test_wrong_length(self):
        with pytest.raises(DimensionMismatchError):
            as_vector([1.0, 2.0], 3)

    @pytest.mark.parametrize("bad", [[np.nan, 0.0], [np.inf, 0.0], [[1.0, 2.0]], "ab"])
    def test_invalid(self, bad):
        with pytest.raises(InvalidVectorError):
            as_vector(bad, 2)

    def test_matrix(self):
        matrix = as_matrix([[1, 2], [3, 4]], 2)
        assert matrix.shape == (2, 2)
        assert matrix.dtype == np.float32

        with pytest.raises(DimensionMismatchError):
            as_matrix([[1, 2, 3]], 2)
        with pytest.raises(InvalidVectorError):
            as_matrix([1, 2], 2)


class TestExceptionHierarchy:

    def test_all_derive_from_base(self):
        for error in (
            DimensionMismatchError,
            InvalidConfigurationError,
            InvalidLabelError,
            InvalidVectorError,
        ):
            assert issubclass(error, NavGraphError)

    def test_validation_errors_are_value_errors(self):
        assert issubclass(DimensionMismatchError, ValueError)
        assert issubclass(InvalidLabelError, ValueError)
