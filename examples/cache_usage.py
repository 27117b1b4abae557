"""Example demonstrating installs through the repository cache.

The first install clones the repository; the second is served from the
cache without touching the network.
"""

from pathlib import Path

from skill_cache.cache import CacheStats, build_context, install_skill
from skill_cache.core.source import checkout_name, parse_source
from skill_cache.errors import SkillCacheError
from skill_cache.utils.paths import format_size


def main():
    """Install two skills from the same repository and show the cache."""
    context = build_context()
    target_dir = Path("/tmp/skill-cache-demo/.claude/skills")

    print(f"Cache root: {context.paths.root}")

    for value in ("anthropics/skills/document-skills/pdf", "anthropics/skills/document-skills/docx"):
        source = parse_source(value)
        try:
            result = install_skill(
                source, target_dir / source.skill_name, context=context, overwrite=True
            )
        except SkillCacheError as e:
            print(f"✗ {e}")
            return

        print(f"✓ Installed {source} at {result.commit[:7]}")
        print(f"  Checkout: {result.checkout.path}")
        if result.skill and result.skill.description:
            print(f"  Description: {result.skill.description}")

    # Offline installs only succeed for revisions already in the cache
    try:
        install_skill(
            "anthropics/skills/document-skills/pdf",
            target_dir / "pdf-offline",
            context=context,
            offline=True,
            overwrite=True,
        )
        print("✓ Offline install served from cache")
    except SkillCacheError as e:
        print(f"✗ Offline install failed: {e}")

    stats = CacheStats.collect(context)
    print(f"\nCache holds {len(stats.repos)} repositories, {len(stats.checkouts)} checkouts")
    print(f"Total size: {format_size(stats.total_size)}")

    print("\nCheckout name examples:")
    print(f"  commit: {checkout_name('anthropics', 'skills', 'a1b2c3d4e5f6')}")


if __name__ == "__main__":
    main()
