"""Git branch analysis and safe cleanup tool.

Features:
- Normalize local and remote branch metadata into immutable records
- Health score (0-100) and status (merged, stale, orphaned, active) per branch
- Compound cleanup rules (merged, stale, name pattern, no remote)
- Safety gate with protected branches and team-safe mode
- Orphaned (gone) branch detection
- Dry-run previews and a recovery log for deleted branches
"""

__version__ = "0.3.0"
