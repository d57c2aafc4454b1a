"""
Upstream query construction

The ranking query service accepts {data_type, site, sql}, where the SQL runs
against a per-site hourly Search Console table referenced as {site_hourly}.
"""
from dataclasses import dataclass
from typing import Dict, List

from ranklens.services.observation_normalizer import PageCondition

DATA_TYPE_HOURLY = "hourly"


@dataclass
class RankQuery:
    """Structured request sent to the ranking query service"""
    site: str
    sql: str
    data_type: str = DATA_TYPE_HOURLY

    def to_payload(self) -> Dict:
        return {"data_type": self.data_type, "site": self.site, "sql": self.sql}


def escape_literal(value: str) -> str:
    """Quote-double, escape backslashes and drop NULs for a single-quoted SQL literal"""
    return str(value).replace("\\", "\\\\").replace("'", "''").replace("\x00", "")


def render_condition(condition: PageCondition) -> str:
    if condition.article_id:
        page_clause = f"page LIKE '%{escape_literal(condition.article_id)}%'"
    else:
        page_clause = f"page = '{escape_literal(condition.exact_url)}'"

    if not condition.keywords:
        return f"({page_clause})"

    keywords = ", ".join(f"'{escape_literal(k)}'" for k in condition.keywords)
    return f"({page_clause} AND REGEXP_REPLACE(query, '\\s+', '', 'g') IN ({keywords}))"


def render_conditions(conditions: List[PageCondition]) -> List[str]:
    """Rendered, de-duplicated WHERE fragments in input order"""
    return list(dict.fromkeys(render_condition(c) for c in conditions))


def build_page_metrics_query(site: str, conditions: List[PageCondition], days: int, limit: int = 0) -> RankQuery:
    """Daily page-level position/impressions/clicks, optionally limited to the top pages by impressions"""
    combined_where = " OR ".join(render_conditions(conditions))
    limit_clause = ""
    if limit > 0:
        limit_clause = f"""WHERE page IN (
          SELECT page
          FROM (
            SELECT
              page,
              ROW_NUMBER() OVER (ORDER BY SUM(impressions) DESC NULLS LAST) AS rank_order
            FROM page_rows
            GROUP BY page
          ) ranked_pages
          WHERE rank_order <= {int(limit)}
        )"""

    sql = f"""
WITH page_rows AS (
  SELECT
    date::DATE AS date,
    page,
    AVG(position) AS avg_position,
    SUM(impressions) AS impressions,
    SUM(clicks) AS clicks
  FROM {{site_hourly}}
  WHERE date::DATE >= CURRENT_DATE - INTERVAL '{int(days)} days'
    AND date::DATE < CURRENT_DATE
    AND page NOT LIKE '%#%'
    AND ({combined_where})
  GROUP BY date::DATE, page
)
SELECT date, page, avg_position, impressions, clicks
FROM page_rows
{limit_clause}
ORDER BY date ASC, impressions DESC NULLS LAST, page
"""
    return RankQuery(site=site, sql=sql.strip())


def build_keyword_rank_query(site: str, conditions: List[PageCondition], days: int) -> RankQuery:
    """Daily (query, page) position/impressions/clicks for tracked keywords"""
    combined_where = " OR\n    ".join(render_conditions(conditions))
    sql = f"""
SELECT
  date::DATE AS date,
  query,
  page,
  AVG(position) AS avg_position,
  SUM(impressions) AS total_impressions,
  SUM(clicks) AS total_clicks
FROM {{site_hourly}}
WHERE date::DATE >= CURRENT_DATE - INTERVAL '{int(days)} days'
  AND date::DATE < CURRENT_DATE
  AND page NOT LIKE '%#%'
  AND (
    {combined_where}
  )
GROUP BY date::DATE, query, page
ORDER BY date::DATE, query
"""
    return RankQuery(site=site, sql=sql.strip())
