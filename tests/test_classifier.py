import pytest

from temapper.classifier import classify_group, count_classes, placement_contig
from temapper.config import MapperConfig
from temapper.models import ANCHOR, DISCARD, GENOME, JUNCTION, READ_CLASSES, TE_LIBRARY, AlignedRead

CFG = MapperConfig()


def seg(
    read_id: str,
    contig: str,
    position: int,
    *,
    length: int = 100,
    strand: str = "+",
    target: str = GENOME,
    clip_start: int = 0,
    clip_end: int = 0,
    paired: bool = False,
    ambiguous: bool = False,
) -> AlignedRead:
    return AlignedRead(
        read_id=read_id,
        contig=contig,
        position=position,
        length=length,
        strand=strand,
        clip_start=clip_start,
        clip_end=clip_end,
        target=target,
        te_family=contig if target == TE_LIBRARY else "",
        mate=read_id if paired else None,
        ambiguous=ambiguous,
    )


def test_junction_clipped_at_end() -> None:
    g = seg("r", "chr1", 1000, length=70, clip_end=30)
    t = seg("r", "L1", 1, length=30, target=TE_LIBRARY)
    c = classify_group([g, t], CFG)
    assert c.read_class == JUNCTION
    assert c.breakpoint == 1069
    assert c.strand == "+"
    assert c.te_family == "L1"
    assert c.te_strand == "+"
    assert c.read is g


def test_junction_clipped_at_start() -> None:
    g = seg("r", "chr1", 1005, length=70, clip_start=30)
    t = seg("r", "L1", 271, length=30, strand="-", target=TE_LIBRARY)
    c = classify_group([t, g], CFG)
    assert c.read_class == JUNCTION
    assert c.breakpoint == 1005
    assert c.strand == "-"
    assert c.te_strand == "-"


def test_short_clip_is_not_junction_evidence() -> None:
    g = seg("r", "chr1", 1000, length=90, clip_end=10)
    t = seg("r", "L1", 1, length=10, target=TE_LIBRARY)
    c = classify_group([g, t], CFG)
    assert c.read_class == DISCARD
    assert c.discard_reason == "no_te_evidence"
    assert c.breakpoint is None


def test_clip_length_must_match_te_segment() -> None:
    g = seg("r", "chr1", 1000, length=70, clip_end=30)
    t = seg("r", "L1", 1, length=60, target=TE_LIBRARY)
    assert classify_group([g, t], CFG).read_class == DISCARD


def test_both_ends_clipped_into_te_is_ambiguous() -> None:
    g = seg("r", "chr1", 1000, length=40, clip_start=30, clip_end=30)
    t = seg("r", "L1", 1, length=30, target=TE_LIBRARY)
    c = classify_group([g, t], CFG)
    assert c.read_class == DISCARD
    assert c.discard_reason == "ambiguous"


def test_clip_matching_two_families_is_ambiguous() -> None:
    g = seg("r", "chr1", 1000, length=70, clip_end=30)
    t1 = seg("r", "L1", 1, length=30, target=TE_LIBRARY)
    t2 = seg("r", "Alu", 1, length=30, target=TE_LIBRARY)
    c = classify_group([g, t1, t2], CFG)
    assert c.discard_reason == "ambiguous"


def test_multimapping_segment_is_discarded() -> None:
    g = seg("r", "chr1", 1000, paired=True, ambiguous=True)
    t = seg("r", "L1", 50, strand="-", target=TE_LIBRARY, paired=True)
    c = classify_group([g, t], CFG)
    assert c.read_class == DISCARD
    assert c.discard_reason == "ambiguous"


def test_anchor_plus_strand_mate() -> None:
    g = seg("p", "chr1", 900, paired=True)
    t = seg("p", "L1", 50, strand="-", target=TE_LIBRARY, paired=True)
    c = classify_group([g, t], CFG)
    assert c.read_class == ANCHOR
    assert c.breakpoint == 999
    assert c.strand == "+"
    assert c.te_family == "L1"
    assert c.te_strand == "+"


def test_anchor_minus_strand_mate() -> None:
    g = seg("p", "chr1", 1100, strand="-", paired=True)
    t = seg("p", "L1", 50, strand="-", target=TE_LIBRARY, paired=True)
    c = classify_group([g, t], CFG)
    assert c.read_class == ANCHOR
    assert c.breakpoint == 1100
    assert c.strand == "-"
    assert c.te_strand == "-"


def test_concordant_pair_is_both_genome() -> None:
    a = seg("p", "chr1", 100, paired=True)
    b = seg("p", "chr1", 300, strand="-", paired=True)
    assert classify_group([a, b], CFG).discard_reason == "both_genome"


def test_te_only_groups() -> None:
    t1 = seg("p", "L1", 10, target=TE_LIBRARY, paired=True)
    t2 = seg("p", "L1", 200, strand="-", target=TE_LIBRARY, paired=True)
    assert classify_group([t1, t2], CFG).discard_reason == "both_te"
    assert classify_group([t1], CFG).discard_reason == "unmapped"


def test_more_than_two_mates_is_ambiguous() -> None:
    segs = [
        seg("p", "chr1", 100, paired=True),
        seg("p", "chr1", 5000, paired=True),
        seg("p", "L1", 10, target=TE_LIBRARY, paired=True),
    ]
    assert classify_group(segs, CFG).discard_reason == "ambiguous"


def test_empty_group_raises() -> None:
    with pytest.raises(ValueError):
        classify_group([], CFG)


def test_count_classes_covers_every_group() -> None:
    groups = [
        [seg("j", "chr1", 1000, length=70, clip_end=30), seg("j", "L1", 1, length=30, target=TE_LIBRARY)],
        [seg("a", "chr1", 900, paired=True), seg("a", "L1", 5, target=TE_LIBRARY, paired=True)],
        [seg("d", "chr1", 900)],
    ]
    classified = [classify_group(g, CFG) for g in groups]
    assert all(c.read_class in READ_CLASSES for c in classified)
    classes, reasons = count_classes(classified)
    assert classes == {JUNCTION: 1, ANCHOR: 1, DISCARD: 1}
    assert reasons["no_te_evidence"] == 1
    assert sum(reasons.values()) == classes[DISCARD]


def test_short_clip_does_not_hide_te_mate() -> None:
    # a clip below min_junction_clip that happens to match the TE mate's
    # aligned length must not turn the pair into clip evidence
    g = seg("p", "chr1", 1000, length=90, clip_end=10, paired=True)
    t = seg("p", "L1", 50, length=11, strand="-", target=TE_LIBRARY, paired=True)
    c = classify_group([g, t], CFG)
    assert c.read_class == ANCHOR
    assert c.breakpoint == 1089
    assert c.te_family == "L1"


def test_placement_follows_classified_segment() -> None:
    segs = [
        seg("s", "chr1", 5000),
        seg("s", "chr2", 800, length=70, clip_end=30),
        seg("s", "L1", 1, length=30, target=TE_LIBRARY),
    ]
    assert classify_group(segs, CFG).contig == "chr2"
    assert placement_contig(segs, CFG) == "chr2"
    assert placement_contig(segs[:1], CFG) == "chr1"
    assert placement_contig(segs[2:], CFG) is None
