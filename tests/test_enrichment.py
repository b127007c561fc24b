"""Unit tests for identifier mapping, enrichment testing and the summary matrix."""

import logging

import pytest
from scipy.stats import fisher_exact

from regen_de.config import EnrichmentConfig
from regen_de.de.de_result import GeneDEResult
from regen_de.de.gene_filter import DEGTable
from regen_de.enrichment.enrichment_analyzer import (
    EmptyResultSet,
    EnrichedTerm,
    EnrichmentTable,
    EnrichmentTester,
    TermGeneSets,
    load_term_gene_sets,
)
from regen_de.enrichment.gene_mapper import IdentityMapper, TableIdentifierMapper
from regen_de.enrichment.summary_matrix import (
    ABSENT,
    SIGNIFICANT,
    TESTED,
    SummaryMatrixBuilder,
)
from regen_de.errors import UnmappedIdentifierWarning


UNIVERSE = [f"g{i}" for i in range(100)]


def _make_term_sets():
    return TermGeneSets(
        genes={
            "T:A": frozenset(f"g{i}" for i in range(10)),
            "T:B": frozenset(f"g{i}" for i in range(50, 80)),
            "T:C": frozenset(["g90", "g91", "outside"]),
        },
        descriptions={"T:A": "wound healing", "T:B": "collagen fibril organization"},
    )


def _query():
    return [f"g{i}" for i in range(8)] + ["g50"]


def _gene(gene_id, lfc):
    return GeneDEResult(gene_id, 100.0, lfc, lfc, 0.2, lfc / 0.2, 1e-6, 1e-5, 1e-6)


def _term(description, padj, term_id=None):
    return EnrichedTerm(
        term_id=term_id or description,
        description=description,
        query_count=3,
        query_size=10,
        background_count=20,
        universe_size=100,
        term_size=20,
        pvalue=padj,
        padj=padj,
        direction="up",
    )


class TestGeneMapper:

    def test_identity(self):
        result = IdentityMapper().map(["a", "b", "a"])
        assert result.mapped == {"a": "a", "b": "b"}
        assert result.unmapped == ()

    def test_table_mapping_reports_unmapped(self):
        mapper = TableIdentifierMapper({"COL1A1": "1277", "Krt14": "3861"})
        with pytest.warns(UnmappedIdentifierWarning):
            result = mapper.map(["Col1a1", "Krt14", "Unknown1"])
        assert result.mapped == {"Col1a1": "1277", "Krt14": "3861"}
        assert result.unmapped == ("Unknown1",)
        assert result.n_mapped == 2

    def test_from_tsv(self, tmp_path):
        path = tmp_path / "map.tsv"
        path.write_text("symbol\tentrez\nCol1a1\t12842\nSox9\t20682\n")
        mapper = TableIdentifierMapper.from_tsv(path)
        assert mapper.lookup("Col1a1") == "12842"
        assert mapper.lookup("SOX9") == "20682"
        assert mapper.lookup("symbol") is None


class TestEnrichmentTester:

    def test_matches_fisher_exact(self):
        table = EnrichmentTester(_make_term_sets()).test(_query(), UNIVERSE, "D5", "up")
        by_id = {t.term_id: t for t in table.tested}
        assert set(by_id) == {"T:A", "T:B"}
        for term in by_id.values():
            k = term.query_count
            n_query = term.query_size
            n_term = term.background_count
            n_universe = term.universe_size
            _, expected = fisher_exact(
                [[k, n_query - k], [n_term - k, n_universe - n_term - n_query + k]],
                alternative="greater",
            )
            assert term.pvalue == pytest.approx(expected, rel=1e-9)

    def test_term_statistics(self):
        table = EnrichmentTester(_make_term_sets()).test(_query(), UNIVERSE, "D5", "up")
        top = table.tested[0]
        assert top.term_id == "T:A"
        assert top.description == "wound healing"
        assert top.query_count == 8
        assert top.background_count == 10
        assert top.universe_size == 100
        assert top.padj < 0.05
        assert [t.term_id for t in table.significant] == ["T:A"]
        assert top.genes == tuple(sorted(f"g{i}" for i in range(8)))

    def test_untested_terms_excluded_from_correction(self):
        table = EnrichmentTester(_make_term_sets()).test(_query(), UNIVERSE)
        term_b = next(t for t in table.tested if t.term_id == "T:B")
        # two tested terms, so padj for the larger p-value equals its p-value
        assert term_b.padj == pytest.approx(term_b.pvalue)

    def test_term_size_limits(self):
        config = EnrichmentConfig(min_term_size=15)
        table = EnrichmentTester(_make_term_sets(), config=config).test(_query(), UNIVERSE)
        assert [t.term_id for t in table.tested] == ["T:B"]
        config = EnrichmentConfig(max_term_size=20)
        table = EnrichmentTester(_make_term_sets(), config=config).test(_query(), UNIVERSE)
        assert [t.term_id for t in table.tested] == ["T:A"]

    def test_query_equal_to_universe_is_not_enriched(self):
        table = EnrichmentTester(_make_term_sets()).test(UNIVERSE, UNIVERSE, "D5", "all")
        assert isinstance(table, EmptyResultSet)
        assert table.reason == "no significant terms"
        for term in table.tested:
            assert term.pvalue == pytest.approx(1.0)

    def test_no_mappable_query(self):
        mapper = TableIdentifierMapper({"g1": "1"})
        tester = EnrichmentTester(_make_term_sets(), mapper=mapper)
        with pytest.warns(UnmappedIdentifierWarning):
            table = tester.test(["Nope1", "Nope2"], ["g1"], "D5", "down")
        assert isinstance(table, EmptyResultSet)
        assert table.reason == "no mappable query genes"
        assert table.unmapped == ("Nope1", "Nope2")
        assert table.to_frame().empty

    def test_no_term_hit(self):
        table = EnrichmentTester(_make_term_sets()).test(["g95"], UNIVERSE)
        assert isinstance(table, EmptyResultSet)
        assert table.reason == "no term contains a query gene"

    def test_symbols_reported(self):
        term_sets = TermGeneSets(genes={"T:X": frozenset(["COL1A1", "COL3A1"])})
        mapper = TableIdentifierMapper({"COL1A1": "COL1A1", "COL3A1": "COL3A1", "ACTB": "ACTB"})
        background = ["Col1a1", "Col3a1", "Actb"]
        with_symbols = EnrichmentTester(term_sets, mapper=mapper).test(
            ["Col1a1"], background
        )
        assert with_symbols.tested[0].genes == ("Col1a1",)
        config = EnrichmentConfig(report_symbols=False)
        with_ids = EnrichmentTester(term_sets, mapper=mapper, config=config).test(
            ["Col1a1"], background
        )
        assert with_ids.tested[0].genes == ("COL1A1",)

    def test_unmapped_query_genes_recorded(self):
        mapper = TableIdentifierMapper({g: g for g in UNIVERSE})
        tester = EnrichmentTester(_make_term_sets(), mapper=mapper)
        with pytest.warns(UnmappedIdentifierWarning):
            table = tester.test(_query() + ["LOC12345"], UNIVERSE)
        assert table.unmapped == ("LOC12345",)
        assert table.n_mapped == 9

    def test_analyze_directions(self):
        deg = DEGTable(
            genes=tuple(_gene(f"g{i}", 2.0) for i in range(8))
            + (_gene("g50", -2.0), _gene("g51", -2.0)),
            alpha=0.05,
            lfc_threshold=1.0,
            use_shrunk_lfc=True,
        )
        config = EnrichmentConfig(directions=("up", "down", "all"))
        results = EnrichmentTester(_make_term_sets(), config=config).analyze(
            deg, UNIVERSE, "D5"
        )
        assert set(results) == {"up", "down", "all"}
        assert results["up"].n_mapped == 8
        assert results["down"].n_mapped == 2
        assert results["all"].n_mapped == 10
        assert results["up"].significant[0].term_id == "T:A"
        assert results["up"].direction == "up"

    def test_unknown_direction(self):
        deg = DEGTable(genes=(), alpha=0.05, lfc_threshold=1.0, use_shrunk_lfc=True)
        config = EnrichmentConfig(directions=("sideways",))
        with pytest.raises(ValueError):
            EnrichmentTester(_make_term_sets(), config=config).analyze(deg, UNIVERSE)


class TestTermGeneSetLoading:

    def test_gmt(self, tmp_path):
        path = tmp_path / "terms.gmt"
        path.write_text(
            "GO:0042060\twound healing\tSox9\tMsx1\n"
            "GO:0030199\tcollagen fibril organization\tCol1a1\tCol3a1\tLox\n"
            "broken\n"
        )
        term_sets = load_term_gene_sets(path)
        assert len(term_sets) == 2
        assert term_sets.genes["GO:0030199"] == frozenset({"Col1a1", "Col3a1", "Lox"})
        assert term_sets.describe("GO:0042060") == "wound healing"

    def test_tsv(self, tmp_path):
        path = tmp_path / "terms.tsv"
        path.write_text(
            "term_id\tgene\tdescription\n"
            "GO:0042060\tSox9\twound healing\n"
            "GO:0042060\tMsx1\twound healing\n"
            "GO:0030199\tCol1a1\t\n"
        )
        term_sets = load_term_gene_sets(path)
        assert term_sets.genes["GO:0042060"] == frozenset({"Sox9", "Msx1"})
        assert term_sets.describe("GO:0030199") == "GO:0030199"

    def test_tsv_missing_columns(self, tmp_path):
        path = tmp_path / "terms.tsv"
        path.write_text("id\tsymbol\nGO:1\tSox9\n")
        with pytest.raises(ValueError):
            load_term_gene_sets(path)


class TestSummaryMatrix:

    def _make_tables(self):
        d5 = EnrichmentTable(
            comparison="D5",
            direction="up",
            tested=(_term("wound healing", 1e-4), _term("collagen fibril organization", 0.2)),
        )
        d10 = EnrichmentTable(
            comparison="D10",
            direction="up",
            tested=(_term("collagen fibril organization", 1e-3),),
        )
        return {"D5": d5, "D10": d10}

    def test_outer_join_and_order(self, caplog):
        with caplog.at_level(logging.WARNING):
            summary = SummaryMatrixBuilder().build(self._make_tables())
        values = summary.values
        assert summary.comparisons == ["D5", "D10"]
        assert list(values.index) == ["wound healing", "collagen fibril organization"]
        assert values.loc["wound healing", "D5"] == pytest.approx(4.0)
        assert values.loc["wound healing", "D10"] == 0.0
        assert values.loc["collagen fibril organization", "D5"] == 0.0
        assert values.loc["collagen fibril organization", "D10"] == pytest.approx(3.0)
        assert "filled with 0" in caplog.text

    def test_presence_distinguishes_zeroes(self):
        presence = SummaryMatrixBuilder().build(self._make_tables()).presence
        assert presence.loc["wound healing", "D5"] == SIGNIFICANT
        assert presence.loc["wound healing", "D10"] == ABSENT
        assert presence.loc["collagen fibril organization", "D5"] == TESTED
        assert presence.loc["collagen fibril organization", "D10"] == SIGNIFICANT

    def test_duplicate_descriptions_keep_strongest(self):
        table = EnrichmentTable(
            comparison="D5",
            direction="up",
            tested=(_term("binding", 1e-2, "T:1"), _term("binding", 1e-5, "T:2")),
        )
        summary = SummaryMatrixBuilder().build({"D5": table})
        assert summary.values.loc["binding", "D5"] == pytest.approx(5.0)

    def test_empty_input(self):
        summary = SummaryMatrixBuilder().build({})
        assert summary.values.empty
        assert summary.presence.empty
