"""
Example: Lineage-wide partitions and freezes.

Mints a lineage, spreads it across several holders, then restricts it with a
level partition and a root freeze. Each restriction is a single write, no
matter how many nodes the lineage holds.
"""

from forest import (
    Forest, FreezeRegistry, Frozen, RestrictionKind, ancestry, lineage_summary,
)


def main():
    print("=" * 80)
    print("FOREST LEDGER - Lineage Partition and Freeze Example")
    print("=" * 80)
    print()

    forest = Forest("demo", verbose=True)
    registry = FreezeRegistry()
    forest.add_guard(registry)

    print("Example 1: Mint and spend")
    print("-" * 80)
    a = forest.mint("issuer", 1_000_000)
    b = forest.spend(a, "issuer", "fund_a", 300_000)
    c = forest.spend(a, "issuer", "fund_b", 200_000)
    d = forest.spend(b, "fund_a", "investor_1", 50_000)
    e = forest.spend(d, "investor_1", "investor_2", 10_000)
    x = forest.mint("other_issuer", 5_000)
    print()
    print(f"Path of investor_2's node: {[i[:10] for i in ancestry(forest, e)]}")
    print(f"Lineage depth: {forest.hierarchy(a)}")
    print()

    print("Example 2: Block every level-1 node")
    print("-" * 80)
    forest.set_partition(a, start=1, end=1, kind=RestrictionKind.EQUAL)
    try:
        forest.spend(c, "fund_b", "investor_3", 1_000)
    except Frozen:
        pass
    forest.spend(d, "investor_1", "investor_3", 1_000)
    forest.clear_partition(a)
    print()

    print("Example 3: Freeze the whole lineage by its root")
    print("-" * 80)
    registry.freeze(forest.root(e))
    try:
        forest.spend(e, "investor_2", "investor_4", 500)
    except Frozen:
        pass
    forest.spend(x, "other_issuer", "investor_4", 500)
    registry.unfreeze(a)
    print()

    print("Example 4: Merge and summarize")
    print("-" * 80)
    forest.spend(c, "fund_b", "fund_b", 50_000)
    siblings = [i for i in forest.lineage(a)
                if forest.owner(i) == "fund_b" and forest.value(i) > 0]
    forest.merge(siblings, "fund_b")
    print()

    summary = lineage_summary(forest, a)
    for key, value in summary.items():
        if key == 'root':
            value = value[:10]
        print(f"  {key:12} {value}")

    result = forest.verify_conservation()
    print()
    print(f"Conservation holds: {result['valid']}")
    print()
    print("=" * 80)


if __name__ == "__main__":
    main()
