# Copyright (c) Syntropy Systems
"""Tests for the procedures' critical values."""

import pytest

from winnow.critical import find_eta, kn_h_squared, rinott


class TestRinott:
    """Tests for Rinott's constant."""

    def test_two_systems(self):
        """k=2, P*=0.95, n0=20 lies just above the normal limit 1.645*sqrt(2)."""
        h = rinott(2, 0.95, 19)
        assert 2.33 < h < 2.7

    def test_grows_with_systems(self):
        """More systems need a larger constant."""
        assert rinott(2, 0.95, 19) < rinott(5, 0.95, 19) < rinott(20, 0.95, 19)

    def test_grows_with_confidence(self):
        """Higher confidence needs a larger constant."""
        assert rinott(3, 0.90, 19) < rinott(3, 0.99, 19)

    def test_shrinks_with_dof(self):
        """More first-stage data tightens the constant."""
        assert rinott(3, 0.95, 49) < rinott(3, 0.95, 9)

    @pytest.mark.parametrize(
        ("k", "pstar", "dof"),
        [(1, 0.95, 19), (2, 1.0, 19), (2, 0.0, 19), (2, 0.95, 0)],
    )
    def test_invalid_arguments(self, k, pstar, dof):
        """Out-of-range arguments raise ValueError."""
        with pytest.raises(ValueError):
            rinott(k, pstar, dof)


class TestFindEta:
    """Tests for GSP's screening constant."""

    def test_positive(self):
        """eta is a positive finite number."""
        eta = find_eta(20, 0.025, 10)
        assert 0.0 < eta < 10.0

    def test_two_systems_near_normal_quantile(self):
        """With k=2 and many dof, eta*sqrt(2) approaches z(alpha/2)."""
        eta = find_eta(200, 0.05, 2)
        assert eta * 2**0.5 == pytest.approx(1.96, abs=0.05)

    def test_grows_with_systems(self):
        """Screening more systems needs a wider margin."""
        assert find_eta(20, 0.025, 2) < find_eta(20, 0.025, 50)

    def test_shrinks_with_alpha(self):
        """A looser error rate gives a smaller margin."""
        assert find_eta(20, 0.1, 5) < find_eta(20, 0.01, 5)

    @pytest.mark.parametrize(
        ("n1", "alpha", "k"),
        [(1, 0.05, 5), (20, 0.0, 5), (20, 1.0, 5), (20, 0.05, 1)],
    )
    def test_invalid_arguments(self, n1, alpha, k):
        """Out-of-range arguments raise ValueError."""
        with pytest.raises(ValueError):
            find_eta(n1, alpha, k)


class TestKnHSquared:
    """Tests for KN's h^2."""

    def test_value(self):
        """h^2 = 2 * Q * (n - 1)."""
        q = 0.5 * ((2 * 0.05 / 1) ** (-2 / 9) - 1)
        assert kn_h_squared(0.95, 2, 10) == pytest.approx(2 * q * 9)

    def test_grows_with_systems(self):
        """More systems widen the whisker."""
        assert kn_h_squared(0.95, 2, 10) < kn_h_squared(0.95, 10, 10)

    @pytest.mark.parametrize(
        ("pcs", "k", "n"),
        [(0.95, 1, 10), (0.95, 2, 1), (1.0, 2, 10)],
    )
    def test_invalid_arguments(self, pcs, k, n):
        """Out-of-range arguments raise ValueError."""
        with pytest.raises(ValueError):
            kn_h_squared(pcs, k, n)
