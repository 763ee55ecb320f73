# conftest.py
"""Shared pytest fixtures: a company with a small chart of accounts."""
import pytest


@pytest.fixture
def user(db, django_user_model):
    return django_user_model.objects.create_user(username="bookkeeper", password="pw")


@pytest.fixture
def company(db):
    from ledger_core.tests.helpers import make_company

    return make_company("Acme Ltd")


@pytest.fixture
def chart(company):
    """dict of code → Account (see helpers.CHART)."""
    from ledger_core.tests.helpers import make_chart

    return make_chart(company)
