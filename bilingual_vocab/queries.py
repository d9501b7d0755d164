"""
SQL Queries for the Wordbank Database

This module contains the SQL run against Wordbank for:
1. Dataset catalog (with origin names)
2. Administrations (with optional demographics)
3. Language exposure records
4. Instrument item inventories

Queries use named bind parameters (``:language``) and are executed through
SQLAlchemy by ``WordbankClient``.
"""


class DatasetQueries:
    """Queries for the dataset catalog."""

    @staticmethod
    def datasets() -> str:
        """One row per dataset with its origin name and instrument."""
        return """
        -- Dataset catalog

        SELECT
            d.id AS dataset_id,
            d.dataset_name AS dataset_name,
            o.origin_name AS origin_name,
            d.contributor AS contributor,
            d.longitudinal AS longitudinal,
            i.language AS language,
            i.form AS form
        FROM common_dataset d
        JOIN common_datasetorigin o ON o.id = d.dataset_origin_id
        JOIN common_instrument i ON i.id = d.instrument_id
        ORDER BY d.id
        """


class AdministrationQueries:
    """Queries for administration-level records."""

    @staticmethod
    def administrations(include_demographics: bool = True) -> str:
        """
        Query for administrations.

        Returns one row per administration with production and comprehension
        scores, the instrument language and form, and the owning dataset.
        Demographic columns are joined from the child table on request.
        """
        demographic_cols = ""
        demographic_join = ""
        if include_demographics:
            demographic_cols = """,
            c.sex AS sex,
            c.birth_order AS birth_order,
            c.caregiver_education AS caregiver_education"""
            demographic_join = "JOIN common_child c ON c.id = a.child_id"

        return f"""
        -- Administrations

        SELECT
            a.id AS administration_id,
            a.data_id AS data_id,
            a.child_id AS child_id,
            a.age AS age,
            a.comprehension AS comprehension,
            a.production AS production,
            a.is_norming AS is_norming,
            a.date_of_test AS date_of_test,
            d.dataset_name AS dataset_name,
            i.language AS language,
            i.form AS form{demographic_cols}
        FROM common_administration a
        JOIN common_dataset d ON d.id = a.dataset_id
        JOIN common_instrument i ON i.id = a.instrument_id
        {demographic_join}
        """

    @staticmethod
    def language_exposures() -> str:
        """One row per reported exposure language per administration."""
        return """
        -- Language exposures

        SELECT
            e.administration_id AS administration_id,
            l.language AS exposure_language,
            e.exposure_proportion AS exposure_proportion,
            e.age_of_first_exposure AS age_of_first_exposure
        FROM common_languageexposure e
        JOIN common_language l ON l.id = e.language_id
        """


class ItemQueries:
    """Queries for instrument item inventories."""

    @staticmethod
    def items() -> str:
        """Items of the instrument identified by ``:language`` and ``:form``."""
        return """
        -- Item inventory

        SELECT
            it.item_id AS item_id,
            it.item_kind AS item_kind,
            it.item_definition AS item_definition,
            it.category AS category
        FROM common_item it
        JOIN common_instrument i ON i.id = it.instrument_id
        WHERE i.language = :language AND i.form = :form
        """
