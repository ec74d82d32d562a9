"""Rule-based suggestions and insight rollups over worker results.

Only successful worker calls contribute. Suggestion ids are derived from the
run id and a per-run counter, so the same results always produce the same
suggestions in the same order.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from .models import (
    SEVERITY_ORDER,
    Insight,
    Severity,
    Suggestion,
    WorkerCallResult,
    WorkerStatus,
)


def _n(metrics: Dict[str, Any], key: str) -> float:
    value = metrics.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return value


def _pluck(items: Optional[List[Dict[str, Any]]], key: str = "url") -> List[str]:
    return [str(i[key]) for i in items or [] if isinstance(i, dict) and i.get(key)]


class _SuggestionBuilder:
    """Accumulates suggestions for one run with deterministic ids."""

    def __init__(self, run_id: str, site_id: str) -> None:
        self.run_id = run_id
        self.site_id = site_id
        self.items: List[Suggestion] = []
        self._index = 0

    def add(self, prefix: str, worker_key: str, **fields: Any) -> None:
        self._index += 1
        self.items.append(
            Suggestion(
                suggestion_id=f"sug_{self.run_id}_{prefix}_{self._index}",
                run_id=self.run_id,
                site_id=self.site_id,
                source_workers=[worker_key],
                **fields,
            )
        )

    def has_type(self, suggestion_type: str) -> bool:
        return any(s.suggestion_type == suggestion_type for s in self.items)


def _serp_rules(b: _SuggestionBuilder, key: str, m: Dict[str, Any]) -> None:
    striking = _n(m, "in_pos_11_to_20")
    if striking > 0:
        opportunities = m.get("opportunities") or []
        b.add(
            "serp_quick_win",
            key,
            suggestion_type="serp_quick_win",
            title=f"Push {striking} Keywords into Top 10",
            description=(
                f"You have {striking} keywords ranking in positions 11-20. These are "
                "quick wins that can move to page 1 with targeted optimization."
            ),
            severity=Severity.HIGH if striking >= 5 else Severity.MEDIUM,
            category="serp",
            evidence={"metrics": m, "worker_key": key, "opportunities": opportunities},
            actions=[
                "Review and optimize on-page content for each keyword",
                "Add internal links from high-authority pages",
                "Include FAQ sections addressing related questions",
                "Update meta titles and descriptions for CTR improvement",
                "Add structured data markup where applicable",
            ],
            impacted_keywords=_pluck(opportunities, "keyword"),
            impacted_urls=_pluck(opportunities),
            estimated_impact="high",
            estimated_effort="quick_win",
        )

    total = _n(m, "keyword_count")
    top10 = _n(m, "in_top10")
    if total > 0 and top10 < total * 0.3:
        b.add(
            "keyword_optimization",
            key,
            suggestion_type="keyword_optimization",
            title="Improve Overall Keyword Rankings",
            description=(
                f"Only {top10} of {total} tracked keywords are in top 10 "
                f"({round(top10 / total * 100)}%). Focus on content quality and "
                "backlink building."
            ),
            severity=Severity.HIGH if top10 < total * 0.1 else Severity.MEDIUM,
            category="serp",
            evidence={
                "keyword_count": total,
                "in_top10": top10,
                "avg_position": m.get("avg_position"),
                "worker_key": key,
            },
            estimated_impact="high",
            estimated_effort="significant",
        )


def _crawl_rules(b: _SuggestionBuilder, key: str, m: Dict[str, Any]) -> None:
    by_type = m.get("issues_by_type")
    if isinstance(by_type, dict):
        missing_title = _n(by_type, "missing_title")
        if missing_title > 0:
            b.add(
                "missing_titles",
                key,
                suggestion_type="technical_fix",
                title=f"Fix {missing_title} Pages with Missing Titles",
                description=(
                    "Pages without title tags won't rank well. Add unique, "
                    "descriptive titles to improve search visibility."
                ),
                severity=Severity.HIGH,
                category="technical",
                evidence={"count": missing_title, "top_issues": m.get("top_issues"), "worker_key": key},
                actions=[
                    "Add unique title tags under 60 characters",
                    "Include primary keyword near the beginning",
                    "Make titles compelling for click-through",
                ],
                estimated_impact="high",
                estimated_effort="quick_win",
                assignee="Dev",
            )
        missing_h1 = _n(by_type, "missing_h1")
        if missing_h1 > 0:
            b.add(
                "missing_h1",
                key,
                suggestion_type="technical_fix",
                title=f"Fix {missing_h1} Pages with Missing H1",
                description=(
                    "H1 tags help search engines understand page content. Each page "
                    "should have exactly one H1."
                ),
                severity=Severity.MEDIUM,
                category="technical",
                evidence={"count": missing_h1, "worker_key": key},
                estimated_impact="medium",
                estimated_effort="quick_win",
                assignee="Dev",
            )
        canonical = _n(by_type, "canonical_issues")
        if canonical > 0:
            b.add(
                "canonical_issues",
                key,
                suggestion_type="technical_fix",
                title=f"Fix {canonical} Canonical Tag Issues",
                description=(
                    "Canonical tag problems can cause duplicate content issues and "
                    "dilute ranking signals."
                ),
                severity=Severity.HIGH,
                category="technical",
                evidence={"count": canonical, "worker_key": key},
                actions=[
                    "Ensure each page has a self-referencing canonical",
                    "Fix any canonical chains or loops",
                    "Remove canonicals pointing to 404 pages",
                ],
                estimated_impact="high",
                estimated_effort="moderate",
                assignee="Dev",
            )
        return

    errors = _n(m, "errors_found")
    if errors > 0:
        checked = _n(m, "pages_checked")
        discovered = _n(m, "total_pages_discovered") or checked
        b.add(
            "technical_errors",
            key,
            suggestion_type="technical_fix",
            title="Fix Technical SEO Issues",
            description=(
                f"Found {errors} technical errors across {checked} of {discovered} pages."
            ),
            severity=Severity.HIGH if errors > 5 else Severity.MEDIUM,
            category="technical",
            evidence={"metrics": m, "worker_key": key},
            estimated_impact="high",
            estimated_effort="moderate",
            assignee="Dev",
        )


def _vitals_rules(b: _SuggestionBuilder, key: str, m: Dict[str, Any]) -> None:
    if m.get("lcp_status") == "poor":
        b.add(
            "cwv_lcp",
            key,
            suggestion_type="performance_fix",
            title="Fix Slow Largest Contentful Paint (LCP)",
            description=(
                f"LCP is {m.get('lcp')}s (target: <2.5s). This directly impacts the "
                "Core Web Vitals ranking factor."
            ),
            severity=Severity.CRITICAL,
            category="performance",
            evidence={"lcp": m.get("lcp"), "slow_urls": m.get("slow_urls"), "worker_key": key},
            actions=[
                "Optimize largest image (compress, use modern formats)",
                "Implement lazy loading for below-fold images",
                "Reduce server response time (TTFB)",
                "Preload critical resources",
                "Use a CDN for static assets",
            ],
            impacted_urls=_pluck(m.get("slow_urls")),
            estimated_impact="high",
            estimated_effort="significant",
            assignee="Dev",
        )
    if m.get("cls_status") == "poor":
        b.add(
            "cwv_cls",
            key,
            suggestion_type="performance_fix",
            title="Fix Layout Shift Issues (CLS)",
            description=(
                f"CLS is {m.get('cls')} (target: <0.1). Layout shifts frustrate users "
                "and hurt rankings."
            ),
            severity=Severity.HIGH,
            category="performance",
            evidence={"cls": m.get("cls"), "worker_key": key},
            actions=[
                "Add width/height attributes to images and videos",
                "Reserve space for dynamic content and ads",
                "Avoid inserting content above existing content",
                "Use transform animations instead of layout-triggering properties",
            ],
            estimated_impact="high",
            estimated_effort="moderate",
            assignee="Dev",
        )
    score = m.get("score")
    if isinstance(score, (int, float)) and score < 50 and not b.has_type("performance_fix"):
        b.add(
            "performance",
            key,
            suggestion_type="performance_fix",
            title="Improve Overall Page Performance",
            description=(
                f"Performance score is {score}/100. Pages scoring below 50 may see "
                "ranking penalties."
            ),
            severity=Severity.CRITICAL if score < 30 else Severity.HIGH,
            category="performance",
            evidence={"metrics": m, "worker_key": key},
            estimated_impact="high",
            estimated_effort="significant",
            assignee="Dev",
        )


def _authority_rules(b: _SuggestionBuilder, key: str, m: Dict[str, Any]) -> None:
    lost = _n(m, "lost_links_30d")
    if lost > 5:
        b.add(
            "lost_links",
            key,
            suggestion_type="link_recovery",
            title=f"Recover {lost} Lost Backlinks",
            description=(
                f"You've lost {lost} backlinks in the past 30 days. Reclaiming these "
                "can restore authority."
            ),
            severity=Severity.HIGH if lost > 10 else Severity.MEDIUM,
            category="authority",
            evidence={
                "lost_links_30d": lost,
                "lost_links_details": m.get("lost_links_details"),
                "worker_key": key,
            },
            actions=[
                "Identify high-value lost links with a backlink tool",
                "Check if linked pages are returning 404 (fix with redirects)",
                "Reach out to site owners to restore removed links",
                "Create new content to attract replacement links",
            ],
            estimated_impact="high",
            estimated_effort="moderate",
        )
    authority = m.get("domain_authority")
    if isinstance(authority, (int, float)) and authority < 30:
        b.add(
            "build_authority",
            key,
            suggestion_type="backlink_campaign",
            title="Build Domain Authority",
            description=(
                f"Domain Authority is {authority}. Building quality backlinks will "
                "improve rankings across all pages."
            ),
            severity=Severity.HIGH if authority < 20 else Severity.MEDIUM,
            category="authority",
            evidence={
                "domain_authority": authority,
                "referring_domains": m.get("referring_domains"),
                "worker_key": key,
            },
            actions=[
                "Create linkable assets (guides, tools, research)",
                "Guest post on industry publications",
                "Pursue journalist and media request opportunities",
                "Build relationships with industry influencers",
            ],
            estimated_impact="high",
            estimated_effort="significant",
        )


def _content_rules(b: _SuggestionBuilder, key: str, m: Dict[str, Any]) -> None:
    if key == "content_decay":
        decaying = _n(m, "decaying_pages")
        if decaying > 0:
            b.add(
                "content_decay",
                key,
                suggestion_type="content_refresh",
                title=f"Refresh {decaying} Decaying Pages",
                description=(
                    f"{decaying} pages are losing traffic. Updating these can recover "
                    "lost organic visits."
                ),
                severity=Severity.HIGH if decaying > 3 else Severity.MEDIUM,
                category="content",
                evidence={
                    "decaying_pages": decaying,
                    "decayed_pages_list": m.get("decayed_pages_list"),
                    "worker_key": key,
                },
                actions=[
                    "Update statistics and dates to the current year",
                    "Add new sections addressing recent developments",
                    "Improve internal linking to/from decaying pages",
                    "Add FAQ sections targeting related questions",
                    "Republish with updated date",
                ],
                impacted_urls=_pluck(m.get("decayed_pages_list")),
                estimated_impact="medium",
                estimated_effort="moderate",
                assignee="Content",
            )
    elif key == "competitive_snapshot":
        gaps = _n(m, "gap_count")
        if gaps > 0:
            b.add(
                "competitive_gaps",
                key,
                suggestion_type="content_gap",
                title=f"Create Content for {gaps} Competitive Gaps",
                description=(
                    f"Competitors rank for {gaps} keywords/topics you don't cover. "
                    "Creating this content can capture new traffic."
                ),
                severity=Severity.HIGH if gaps >= 10 else Severity.MEDIUM,
                category="competitive",
                evidence={
                    "gap_count": gaps,
                    "content_gaps": m.get("content_gaps"),
                    "worker_key": key,
                },
                actions=[
                    "Prioritize gaps by search volume and difficulty",
                    "Create comprehensive content better than competitors",
                    "Include unique insights, data, or perspectives",
                    "Optimize for featured snippets where applicable",
                ],
                impacted_keywords=_pluck(m.get("content_gaps"), "keyword"),
                estimated_impact="high",
                estimated_effort="significant",
                assignee="Content",
            )
    elif key == "content_qa":
        issues = _n(m, "issues_found")
        if issues > 0:
            b.add(
                "content_quality",
                key,
                suggestion_type="content_quality",
                title="Fix Content Quality Issues",
                description=(
                    f"Content QA found {issues} issues affecting content quality and "
                    "user experience."
                ),
                severity=Severity.HIGH if issues > 10 else Severity.MEDIUM,
                category="content",
                evidence={"metrics": m, "worker_key": key},
                estimated_impact="medium",
                estimated_effort="quick_win",
                assignee="Content",
            )


_RULES = {
    "serp_intel": _serp_rules,
    "crawl_render": _crawl_rules,
    "core_web_vitals": _vitals_rules,
    "backlink_authority": _authority_rules,
    "content_decay": _content_rules,
    "competitive_snapshot": _content_rules,
    "content_qa": _content_rules,
}


def generate_suggestions(
    run_id: str, site_id: str, results: Sequence[WorkerCallResult]
) -> List[Suggestion]:
    """Derive suggestions from successful worker metrics.

    Returns
    -------
    List[Suggestion]
        Sorted by severity (critical, high, medium, low); ties keep rule order.
    """
    builder = _SuggestionBuilder(run_id, site_id)
    for result in results:
        if result.status is not WorkerStatus.SUCCESS or not result.normalized_metrics:
            continue
        rule = _RULES.get(result.worker_key)
        if rule is not None:
            rule(builder, result.worker_key, result.normalized_metrics)
    return sorted(builder.items, key=lambda s: SEVERITY_ORDER[s.severity])


def generate_insights(
    run_id: str, site_id: str, results: Sequence[WorkerCallResult]
) -> List[Insight]:
    """Daily summary across successful workers plus a technical health rollup."""
    insights: List[Insight] = []
    successful = [r for r in results if r.status is WorkerStatus.SUCCESS]
    if successful:
        lines = [f"- {r.worker_key}: {r.summary}" for r in successful if r.summary]
        insights.append(
            Insight(
                insight_id=f"ins_{run_id}_daily_summary",
                run_id=run_id,
                site_id=site_id,
                title="Daily SEO Health Summary",
                summary=(
                    f"Analyzed {len(successful)} data sources. Key findings across workers."
                ),
                full_content="\n".join(lines),
                insight_type="daily_summary",
                priority=90,
            )
        )

    by_key = {r.worker_key: r for r in successful}
    crawl = by_key.get("crawl_render")
    vitals = by_key.get("core_web_vitals")
    if crawl or vitals:
        errors = (crawl.normalized_metrics.get("errors_found") if crawl else None) or 0
        score = vitals.normalized_metrics.get("score") if vitals else None
        insights.append(
            Insight(
                insight_id=f"ins_{run_id}_technical",
                run_id=run_id,
                site_id=site_id,
                title="Technical Health Report",
                summary=(
                    f"Technical SEO status: {errors} errors, "
                    f"Performance: {score if score is not None else 'N/A'}"
                ),
                insight_type="technical_issues",
                priority=70,
            )
        )
    return insights
