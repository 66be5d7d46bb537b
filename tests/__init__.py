"""Test suite for the appointment assistant."""
