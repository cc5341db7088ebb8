"""
Tests for input validation module.
"""

import os
import warnings

import pytest

from lidar_raster.core.validation import (
    ValidationError,
    InvalidGeometryError,
    InvalidConfigurationError,
    InsufficientPointsError,
    DegenerateGeometryError,
    FilePermissionError,
    IndexOutOfRangeError,
    validate_cell_size,
    validate_bounds,
    validate_z_range,
    validate_grid_dimensions,
    validate_output_path,
)


class TestExceptionHierarchy:
    """Tests for the error types."""

    @pytest.mark.parametrize("error", [
        InvalidGeometryError,
        InvalidConfigurationError,
        InsufficientPointsError,
        DegenerateGeometryError,
        FilePermissionError,
    ])
    def test_user_errors_are_validation_errors(self, error):
        """Test that user-facing errors share the ValueError base."""
        assert issubclass(error, ValidationError)
        assert issubclass(error, ValueError)

    def test_index_error_is_separate(self):
        """Test that internal index errors are not validation errors."""
        assert issubclass(IndexOutOfRangeError, IndexError)
        assert not issubclass(IndexOutOfRangeError, ValidationError)


class TestCellSizeValidation:
    """Tests for cell size validation."""

    def test_scalar(self):
        """Test that a scalar applies to both axes."""
        assert validate_cell_size(0.5) == (0.5, 0.5)
        assert validate_cell_size(2) == (2.0, 2.0)

    def test_pair(self):
        """Test separate dx and dy."""
        assert validate_cell_size((1.0, 2.0)) == (1.0, 2.0)

    def test_zero_raises(self):
        """Test that zero cell size raises."""
        with pytest.raises(InvalidGeometryError, match="must be positive"):
            validate_cell_size(0)

    def test_negative_component_raises(self):
        """Test that a negative component raises."""
        with pytest.raises(InvalidGeometryError, match="must be positive"):
            validate_cell_size((1.0, -1.0))

    def test_infinite_raises(self):
        """Test that an infinite cell size raises."""
        with pytest.raises(InvalidGeometryError):
            validate_cell_size(float("inf"))

    def test_none_raises(self):
        """Test that None raises."""
        with pytest.raises(InvalidGeometryError, match="cannot be None"):
            validate_cell_size(None)

    def test_string_raises(self):
        """Test that a string is rejected."""
        with pytest.raises(InvalidGeometryError, match="must be a number"):
            validate_cell_size("1.0")

    def test_non_numeric_component_raises(self):
        """Test that a pair of non-numbers is rejected."""
        with pytest.raises(InvalidGeometryError, match="must be numeric"):
            validate_cell_size(("1", "2"))

    def test_wrong_length_raises(self):
        """Test that a 3-component size is rejected."""
        with pytest.raises(InvalidGeometryError, match="exactly 2"):
            validate_cell_size((1.0, 1.0, 1.0))

    def test_custom_context_in_message(self):
        """Test that custom context appears in error message."""
        with pytest.raises(InvalidGeometryError, match="resolution"):
            validate_cell_size(-1, context="resolution")


class TestBoundsValidation:
    """Tests for extent validation."""

    def test_valid_bounds(self):
        """Test that bounds come back as floats."""
        assert validate_bounds([0, 1, 10, 11]) == (0.0, 1.0, 10.0, 11.0)

    def test_zero_width_allowed(self):
        """Test that a degenerate extent is accepted."""
        assert validate_bounds((5, 5, 5, 5)) == (5.0, 5.0, 5.0, 5.0)

    def test_inverted_raises(self):
        """Test that min > max raises."""
        with pytest.raises(InvalidGeometryError, match="greater than"):
            validate_bounds((0, 10, 10, 0))

    def test_wrong_length_raises(self):
        """Test that anything but four values raises."""
        with pytest.raises(InvalidGeometryError, match="min_x, min_y, max_x, max_y"):
            validate_bounds((0, 0, 1))

    def test_nan_raises(self):
        """Test that non-finite bounds raise."""
        with pytest.raises(InvalidGeometryError, match="finite"):
            validate_bounds((0, 0, float("nan"), 1))

    def test_garbage_raises(self):
        """Test that non-numeric bounds raise."""
        with pytest.raises(InvalidGeometryError, match="four numbers"):
            validate_bounds(("a", 0, 1, 1))


class TestZRangeValidation:
    """Tests for z-range validation."""

    def test_none_passes(self):
        assert validate_z_range(None) is None

    def test_valid_range(self):
        assert validate_z_range([90, 120]) == (90.0, 120.0)

    def test_inverted_raises(self):
        """Test that min_z > max_z raises."""
        with pytest.raises(InvalidConfigurationError, match="greater than"):
            validate_z_range((5, 1))

    def test_wrong_length_raises(self):
        """Test that a single value is rejected."""
        with pytest.raises(InvalidConfigurationError):
            validate_z_range((5,))


class TestGridDimensionValidation:
    """Tests for grid dimension validation."""

    def test_valid_dimensions(self):
        """Test that valid dimensions pass."""
        validate_grid_dimensions(100, 100)

    def test_zero_rows_raises(self):
        """Test that zero rows raises."""
        with pytest.raises(InvalidGeometryError, match="Invalid grid dimensions"):
            validate_grid_dimensions(0, 100)

    def test_negative_cols_raises(self):
        """Test that negative cols raises."""
        with pytest.raises(InvalidGeometryError):
            validate_grid_dimensions(100, -1)

    def test_context_in_message(self):
        """Test that bounds and cell size are reported."""
        with pytest.raises(InvalidGeometryError, match="cell size"):
            validate_grid_dimensions(0, 0, bounds=(0, 0, 1, 1), cell_size=(1.0, 1.0))

    def test_large_grid_warns(self):
        """Test that very large grid triggers warning."""
        with pytest.warns(UserWarning, match="very large grid"):
            validate_grid_dimensions(20000, 20000)

    def test_normal_grid_no_warning(self):
        """Test that a normal grid does not warn."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            validate_grid_dimensions(1000, 1000)

    def test_large_grid_warning_can_be_skipped(self):
        """Test that callers re-checking an allocated grid can skip the warning."""
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            validate_grid_dimensions(20000, 20000, warn_large=False)


class TestOutputPathValidation:
    """Tests for output path validation."""

    def test_valid_path(self, tmp_path):
        """Test that valid path passes."""
        result = validate_output_path(tmp_path / "output.tif")
        assert result == tmp_path / "output.tif"

    def test_nonexistent_directory_raises(self, tmp_path):
        """Test that nonexistent directory raises FilePermissionError."""
        with pytest.raises(FilePermissionError, match="does not exist"):
            validate_output_path(tmp_path / "nonexistent" / "output.tif")

    def test_context_in_message(self, tmp_path):
        """Test that context appears in error message."""
        with pytest.raises(FilePermissionError, match="raster output"):
            validate_output_path(tmp_path / "nope" / "out.tif", context="raster output")

    @pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0,
                        reason="permission bits are not enforced")
    def test_readonly_directory_raises(self, tmp_path):
        """Test that an unwritable directory raises."""
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        try:
            with pytest.raises(FilePermissionError, match="no write permission"):
                validate_output_path(locked / "out.tif")
        finally:
            locked.chmod(0o700)
