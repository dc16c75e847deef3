"""
VeraBot - Quote Service
=======================

Guild-scoped quote operations: quotes, ratings and tags.

DESIGN:
    Every method takes the guild id first and runs its SQL against that
    guild's own database, so quote ids are only unique within a guild.
    Blocking sqlite3 work runs on a worker thread.
"""

import asyncio
from typing import Any, Dict, List, Optional

from verabot.core.constants import (
    DEFAULT_QUOTE_AUTHOR,
    DEFAULT_QUOTE_CATEGORY,
    MAX_RATING,
    MIN_RATING,
)
from verabot.core.database import (
    GuildDatabaseManager,
    QuoteRatingSummary,
    QuoteRecord,
    get_guild_db,
    like_pattern,
)
from verabot.core.database.manager import GuildId
from verabot.core.logger import logger
from verabot.utils.time_format import utc_now_iso


# =============================================================================
# Validation
# =============================================================================

def _require_id(value: Any, name: str = "Quote ID") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


def _require_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} is required")
    return value


# =============================================================================
# Quote Service
# =============================================================================

class QuoteService:
    """
    Quote storage for every guild.

    Attributes:
        db: Guild database manager the service borrows handles from.
    """

    def __init__(self, db: Optional[GuildDatabaseManager] = None) -> None:
        self.db = db or get_guild_db()

    # =========================================================================
    # Quotes
    # =========================================================================

    async def add_quote(
        self,
        guild_id: GuildId,
        text: str,
        author: str = DEFAULT_QUOTE_AUTHOR,
        category: str = DEFAULT_QUOTE_CATEGORY,
    ) -> int:
        """
        Add a quote to a guild.

        Returns:
            ID of the new quote.
        """
        _require_text(text, "Quote text")
        author = str(author) if author else DEFAULT_QUOTE_AUTHOR
        handle = await self.db.get_guild_database(guild_id)

        def _add():
            now = utc_now_iso()
            cursor = handle.execute(
                """INSERT INTO quotes (text, author, addedAt, category, createdAt, updatedAt)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (text, author, now, category or DEFAULT_QUOTE_CATEGORY, now, now)
            )
            return cursor.lastrowid

        quote_id = await asyncio.to_thread(_add)

        logger.tree("Quote Added", [
            ("Guild", handle.guild_id),
            ("Quote ID", str(quote_id)),
            ("Author", author[:50]),
        ], emoji="💬")

        return quote_id

    async def get_all_quotes(self, guild_id: GuildId) -> List[QuoteRecord]:
        """All quotes in a guild, newest first."""
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            rows = handle.fetchall("SELECT * FROM quotes ORDER BY addedAt DESC, id DESC")
            return [dict(row) for row in rows]

        return await asyncio.to_thread(_get)

    async def get_quote_by_id(self, guild_id: GuildId, quote_id: int) -> Optional[QuoteRecord]:
        """A single quote, or None if the guild has no quote with that id."""
        _require_id(quote_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone("SELECT * FROM quotes WHERE id = ?", (quote_id,))
            return dict(row) if row else None

        return await asyncio.to_thread(_get)

    async def search_quotes(self, guild_id: GuildId, keyword: str) -> List[QuoteRecord]:
        """Quotes whose text or author contains the keyword."""
        _require_text(keyword, "Search keyword")
        handle = await self.db.get_guild_database(guild_id)
        pattern = like_pattern(keyword)

        def _search():
            rows = handle.fetchall(
                """SELECT * FROM quotes
                   WHERE text LIKE ? ESCAPE '\\' OR author LIKE ? ESCAPE '\\'
                   ORDER BY addedAt DESC, id DESC""",
                (pattern, pattern)
            )
            return [dict(row) for row in rows]

        return await asyncio.to_thread(_search)

    async def get_random_quote(self, guild_id: GuildId) -> Optional[QuoteRecord]:
        """A random quote, or None for a guild without quotes."""
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone("SELECT * FROM quotes ORDER BY RANDOM() LIMIT 1")
            return dict(row) if row else None

        return await asyncio.to_thread(_get)

    async def update_quote(
        self,
        guild_id: GuildId,
        quote_id: int,
        text: str,
        author: str = DEFAULT_QUOTE_AUTHOR,
    ) -> bool:
        """
        Replace a quote's text and author.

        Returns:
            True if the quote existed and was updated.
        """
        _require_id(quote_id)
        _require_text(text, "Quote text")
        author = str(author) if author else DEFAULT_QUOTE_AUTHOR
        handle = await self.db.get_guild_database(guild_id)

        def _update():
            cursor = handle.execute(
                "UPDATE quotes SET text = ?, author = ?, updatedAt = ? WHERE id = ?",
                (text, author, utc_now_iso(), quote_id)
            )
            return cursor.rowcount > 0

        return await asyncio.to_thread(_update)

    async def delete_quote(self, guild_id: GuildId, quote_id: int) -> bool:
        """
        Delete a quote together with its ratings and tag links.

        Dependents are removed explicitly as well as by cascade, since
        files from older releases may lack the foreign keys.

        Returns:
            True if the quote existed.
        """
        _require_id(quote_id)
        handle = await self.db.get_guild_database(guild_id)

        def _delete():
            with handle.transaction() as tx:
                tx.execute("DELETE FROM quote_ratings WHERE quoteId = ?", (quote_id,))
                tx.execute("DELETE FROM quote_tags WHERE quoteId = ?", (quote_id,))
                tx.execute("DELETE FROM quotes WHERE id = ?", (quote_id,))
                return tx.rowcount > 0

        deleted = await asyncio.to_thread(_delete)

        if deleted:
            logger.tree("Quote Deleted", [
                ("Guild", handle.guild_id),
                ("Quote ID", str(quote_id)),
            ], emoji="🗑️")

        return deleted

    async def get_quote_count(self, guild_id: GuildId) -> int:
        handle = await self.db.get_guild_database(guild_id)

        def _count():
            row = handle.fetchone("SELECT COUNT(*) AS count FROM quotes")
            return row["count"] if row else 0

        return await asyncio.to_thread(_count)

    # =========================================================================
    # Ratings
    # =========================================================================

    async def rate_quote(
        self,
        guild_id: GuildId,
        quote_id: int,
        user_id: GuildId,
        rating: int,
    ) -> bool:
        """
        Rate a quote 1-5. A user's later rating replaces their earlier one.

        The quote's cached average and count are recomputed in the same
        transaction.

        Returns:
            True if recorded, False if the quote does not exist.
        """
        _require_id(quote_id)
        if user_id is None or not str(user_id).strip():
            raise ValueError("User ID is required")
        if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            raise ValueError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
        handle = await self.db.get_guild_database(guild_id)

        def _rate():
            with handle.transaction() as tx:
                tx.execute("SELECT 1 FROM quotes WHERE id = ?", (quote_id,))
                if tx.fetchone() is None:
                    return False

                tx.execute(
                    """INSERT INTO quote_ratings (quoteId, userId, rating, createdAt)
                       VALUES (?, ?, ?, ?)
                       ON CONFLICT(quoteId, userId) DO UPDATE SET
                           rating = excluded.rating,
                           createdAt = excluded.createdAt""",
                    (quote_id, str(user_id), rating, utc_now_iso())
                )
                tx.execute(
                    """UPDATE quotes SET
                           averageRating = (SELECT AVG(rating) FROM quote_ratings WHERE quoteId = ?),
                           ratingCount = (SELECT COUNT(*) FROM quote_ratings WHERE quoteId = ?)
                       WHERE id = ?""",
                    (quote_id, quote_id, quote_id)
                )
                return True

        return await asyncio.to_thread(_rate)

    async def get_quote_rating(self, guild_id: GuildId, quote_id: int) -> QuoteRatingSummary:
        """Average rating and rating count; zeros for an unrated quote."""
        _require_id(quote_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone(
                """SELECT AVG(rating) AS average, COUNT(*) AS count
                   FROM quote_ratings WHERE quoteId = ?""",
                (quote_id,)
            )
            return {
                "average": (row["average"] or 0) if row else 0,
                "count": (row["count"] or 0) if row else 0,
            }

        return await asyncio.to_thread(_get)

    # =========================================================================
    # Tags
    # =========================================================================

    async def tag_quote(self, guild_id: GuildId, quote_id: int, tag_name: str) -> bool:
        """
        Attach a tag to a quote, creating the tag if needed.

        Returns:
            True if the quote exists (tagging twice is not an error),
            False if it does not.
        """
        _require_id(quote_id)
        _require_text(tag_name, "Tag name")
        tag_name = tag_name.strip().lower()
        handle = await self.db.get_guild_database(guild_id)

        def _tag():
            with handle.transaction() as tx:
                tx.execute("SELECT 1 FROM quotes WHERE id = ?", (quote_id,))
                if tx.fetchone() is None:
                    return False

                tx.execute(
                    "INSERT OR IGNORE INTO tags (name, createdAt) VALUES (?, ?)",
                    (tag_name, utc_now_iso())
                )
                tx.execute("SELECT id FROM tags WHERE name = ?", (tag_name,))
                tag_id = tx.fetchone()["id"]
                tx.execute(
                    "INSERT OR IGNORE INTO quote_tags (quoteId, tagId) VALUES (?, ?)",
                    (quote_id, tag_id)
                )
                return True

        return await asyncio.to_thread(_tag)

    async def get_quotes_by_tag(self, guild_id: GuildId, tag_name: str) -> List[QuoteRecord]:
        _require_text(tag_name, "Tag name")
        tag_name = tag_name.strip().lower()
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            rows = handle.fetchall(
                """SELECT DISTINCT q.* FROM quotes q
                   JOIN quote_tags qt ON q.id = qt.quoteId
                   JOIN tags t ON qt.tagId = t.id
                   WHERE t.name = ?
                   ORDER BY q.addedAt DESC, q.id DESC""",
                (tag_name,)
            )
            return [dict(row) for row in rows]

        return await asyncio.to_thread(_get)

    async def get_quote_tags(self, guild_id: GuildId, quote_id: int) -> List[str]:
        """Tag names attached to a quote, alphabetical."""
        _require_id(quote_id)
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            rows = handle.fetchall(
                """SELECT t.name FROM tags t
                   JOIN quote_tags qt ON qt.tagId = t.id
                   WHERE qt.quoteId = ?
                   ORDER BY t.name""",
                (quote_id,)
            )
            return [row["name"] for row in rows]

        return await asyncio.to_thread(_get)

    # =========================================================================
    # Guild-Level Operations
    # =========================================================================

    async def get_guild_statistics(self, guild_id: GuildId) -> Dict[str, Any]:
        """Quote totals for a guild, computed with one aggregate query."""
        handle = await self.db.get_guild_database(guild_id)

        def _get():
            row = handle.fetchone(
                """SELECT
                       COUNT(*) AS total,
                       COUNT(DISTINCT author) AS authors,
                       AVG(CASE WHEN ratingCount > 0 THEN averageRating END) AS avg_rating,
                       COUNT(DISTINCT category) AS categories
                   FROM quotes"""
            )
            return {
                "guildId": handle.guild_id,
                "totalQuotes": row["total"] or 0,
                "uniqueAuthors": row["authors"] or 0,
                "averageRating": row["avg_rating"] or 0,
                "categories": row["categories"] or 0,
            }

        return await asyncio.to_thread(_get)

    async def export_guild_data(self, guild_id: GuildId) -> Dict[str, Any]:
        """
        Everything the guild stores about quotes, for data portability.

        Returns:
            Dict with guildId, exportedAt, statistics and data sections.
        """
        handle = await self.db.get_guild_database(guild_id)

        def _export():
            quotes = [dict(r) for r in handle.fetchall("SELECT * FROM quotes ORDER BY id")]
            tags = [dict(r) for r in handle.fetchall("SELECT * FROM tags ORDER BY name")]
            ratings = [dict(r) for r in handle.fetchall("SELECT * FROM quote_ratings ORDER BY id")]
            links = [dict(r) for r in handle.fetchall("SELECT * FROM quote_tags ORDER BY quoteId, tagId")]
            return quotes, tags, ratings, links

        quotes, tags, ratings, links = await asyncio.to_thread(_export)

        logger.tree("Guild Quotes Exported", [
            ("Guild", handle.guild_id),
            ("Quotes", str(len(quotes))),
            ("Ratings", str(len(ratings))),
        ], emoji="📤")

        return {
            "guildId": handle.guild_id,
            "exportedAt": utc_now_iso(),
            "statistics": {
                "totalQuotes": len(quotes),
                "totalTags": len(tags),
                "totalRatings": len(ratings),
            },
            "data": {
                "quotes": quotes,
                "tags": tags,
                "ratings": ratings,
                "quoteTags": links,
            },
        }

    async def delete_guild_data(self, guild_id: GuildId) -> bool:
        """Delete the guild's whole database directory. See GuildDatabaseManager."""
        return await self.db.delete_guild_data(guild_id)


__all__ = ["QuoteService"]
