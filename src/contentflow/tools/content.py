"""
Content management tools used by the pipeline agents.

These are stand-ins for real integrations (search, CMS, scheduler): they return deterministic,
plausible payloads so that the pipeline can be exercised end to end.  Only their calling contract
(parameter models and result shapes) matters to the rest of the package.
"""

import math
import time
from datetime import (
    datetime,
    timedelta,
    timezone,
)
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)
from pydantic.alias_generators import to_camel

from contentflow.core.schema import Platform
from contentflow.tools import (
    ToolContext,
    register_tool,
)


class _CamelModel(BaseModel):
    """Parameter models are exposed to the model with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _doc_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}"


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------
class RouterArgs(_CamelModel):
    user_input: str = Field(..., description="The user's message or request")
    topic: Optional[str] = Field(None, description="Main topic of the request, if any")


@register_tool("router_tool", RouterArgs)
async def router_tool(args: RouterArgs, context: ToolContext) -> Dict[str, Any]:
    """A tool that parses user input to decide the route action"""
    text = args.user_input.lower()
    route_context = {"topic": args.topic} if args.topic else {}

    if "strategy" in text:
        return {"action": "create_strategy", "platform": "twitter", "context": route_context}
    if "update" in text or "manage" in text:
        return {"action": "manage_content", "platform": "blog", "context": route_context}

    if "linkedin" in text:
        platform = "linkedin"
    elif "twitter" in text:
        platform = "twitter"
    else:
        platform = "blog"
    return {"action": "create_content", "platform": platform, "context": route_context}


# ---------------------------------------------------------------------------
# Research
# ---------------------------------------------------------------------------
class ResearchArgs(_CamelModel):
    topic: str = Field(..., description="The topic to research")


@register_tool("research_tool", ResearchArgs)
async def research_tool(args: ResearchArgs, context: ToolContext) -> Dict[str, Any]:
    """Gather references or data about a topic"""
    topic = args.topic
    return {
        "references": [
            f"Latest trends in {topic}",
            f"Key statistics about {topic}",
            f"Industry insights for {topic}",
        ],
        "keyPoints": [
            f"{topic} is transforming rapidly",
            f"Major companies are investing in {topic}",
            f"Future outlook for {topic} is promising",
        ],
        "sources": [
            f"https://example.com/research/{topic}",
            f"https://example.com/stats/{topic}",
        ],
    }


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------
class StrategyArgs(_CamelModel):
    topic: str = Field(..., description="Topic for the strategy")
    platform: str = Field(..., description="Which platform - twitter, linkedin, blog?")


@register_tool("strategy_tool", StrategyArgs)
async def strategy_tool(args: StrategyArgs, context: ToolContext) -> Dict[str, Any]:
    """Tool that returns a new content strategy object"""
    topic, platform = args.topic, args.platform
    return {
        "tone": "professional",
        "structure": {
            "sections": ["intro", "body", "conclusion"],
            "wordCount": 1000 if platform == "blog" else 300,
            "format": "thread" if platform == "twitter" else "article",
        },
        "guidelines": [
            "Be concise and clear",
            "Use relevant examples",
            "Include a call to action",
        ],
        "keywords": [topic.lower(), "technology", "innovation"],
        "engagement": {
            "callToAction": "Share your thoughts in the comments!",
            "targetAudience": "tech professionals",
            "hashtagStrategy": f"#{''.join(topic.split())} #Tech",
        },
    }


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------
class FormatterArgs(_CamelModel):
    content: str = Field(..., description="The content to format")
    platform: Platform
    tone: str = Field(..., description="The desired tone of voice")


@register_tool("formatter_tool", FormatterArgs)
async def formatter_tool(args: FormatterArgs, context: ToolContext) -> Dict[str, Any]:
    """Format content for a given platform"""
    platform = args.platform.value
    words = args.content.split(" ")
    return {
        "formattedContent": f"[{platform.upper()}] {args.content} (in {args.tone} tone)",
        "metadata": {
            "platform": platform,
            "type": "article" if platform == "blog" else "post",
            "wordCount": len(words),
            "readingTime": math.ceil(len(words) / 200),
        },
        "structure": {
            "sections": [
                {"type": "opening", "content": "Opening lines..."},
                {"type": "body", "content": "Main content..."},
                {"type": "closing", "content": "Call to action..."},
            ],
        },
        "seo": {
            "keywords": words[:5],
            "hashtags": ["#Tech", "#Innovation"],
        },
    }


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------
class PublishStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"


class PublishMetadata(_CamelModel):
    platform: Platform
    type: str
    scheduled_date: Optional[str] = None
    status: Optional[PublishStatus] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    word_count: Optional[int] = None
    reading_time: Optional[int] = None


class PublisherArgs(_CamelModel):
    content: str
    metadata: PublishMetadata
    platform: Platform


# Publishing is a side effect: every call must reach the CMS.
@register_tool("publisher_tool", PublisherArgs, memoize=False)
async def publisher_tool(args: PublisherArgs, context: ToolContext) -> Dict[str, Any]:
    """Store or publish the final content"""
    doc_id = _doc_id("doc")
    now = datetime.now(timezone.utc)
    platform = args.platform.value

    scheduled = _parse_iso(args.metadata.scheduled_date) if args.metadata.scheduled_date else None
    is_scheduled = scheduled is not None and scheduled > now
    status = PublishStatus.SCHEDULED if is_scheduled else PublishStatus.PUBLISHED

    metadata = args.metadata.model_dump(mode="json", by_alias=True, exclude_none=True)
    metadata.update(status=status.value, lastUpdated=now.isoformat())

    result: Dict[str, Any] = {
        "id": doc_id,
        "status": status.value,
        "platform": platform,
        "publishedAt": args.metadata.scheduled_date if is_scheduled else now.isoformat(),
        "content": args.content,
        "metadata": metadata,
        "url": f"https://example.com/{platform}/{doc_id}",
    }
    if is_scheduled and scheduled is not None:
        minutes = math.floor((scheduled - now).total_seconds() / 60)
        result["schedulingDetails"] = {
            "scheduledFor": args.metadata.scheduled_date,
            "willPublishIn": f"{minutes} minutes",
        }
    return result


# ---------------------------------------------------------------------------
# Content calendar
# ---------------------------------------------------------------------------
class CalendarAction(str, Enum):
    CREATE_PLAN = "create_plan"
    ADD_CONTENT = "add_content"
    GET_SCHEDULE = "get_schedule"
    UPDATE_CONTENT = "update_content"
    SAVE_STRATEGY = "save_strategy"
    GET_STRATEGY = "get_strategy"
    GENERATE_IDEAS = "generate_ideas"


class CalendarEntry(_CamelModel):
    title: str
    description: str
    platform: Platform
    scheduled_date: str
    status: PublishStatus
    type: str
    format: Optional[str] = None
    angle: Optional[str] = None
    tags: Optional[List[str]] = None


class CalendarData(_CamelModel):
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    strategy: Optional[Dict[str, Any]] = None
    frequency: Optional[Dict[str, Any]] = None
    topics: Optional[List[str]] = None
    platforms: Optional[List[Platform]] = None
    content_id: Optional[str] = None
    content: Optional[CalendarEntry] = None


class CalendarArgs(_CamelModel):
    action: CalendarAction
    data: CalendarData = Field(default_factory=CalendarData)


_POSTS_PER_DAY = {"linkedin": 2, "twitter": 3, "blog": 1}
_PREFERRED_TIMES = {
    "linkedin": ["09:00", "16:00"],
    "twitter": ["08:00", "12:00", "17:00"],
    "blog": ["11:00"],
}
_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]


def _platform_schedule(platform: str) -> Dict[str, Any]:
    return {
        "platform": platform,
        "postsPerDay": _POSTS_PER_DAY[platform],
        "preferredTimes": _PREFERRED_TIMES[platform],
        "bestDays": ["Monday", "Thursday"] if platform == "blog" else list(_WEEKDAYS),
    }


def _create_plan(data: CalendarData) -> Dict[str, Any]:
    platforms = [p.value for p in data.platforms or []]
    topics = data.topics or []
    schedules = [_platform_schedule(p) for p in platforms]
    themes = [
        {
            "topic": topic,
            "series": [
                {
                    "name": f"{topic} Insights",
                    "frequency": "weekly",
                    "format": "deep dive",
                    "platforms": ["linkedin", "blog"],
                },
                {
                    "name": f"Quick {topic} Tips",
                    "frequency": "daily",
                    "format": "short tips",
                    "platforms": ["twitter"],
                },
            ],
        }
        for topic in topics
    ]

    total_posts = 0.0
    if data.start_date and data.end_date:
        days = (_parse_iso(data.end_date) - _parse_iso(data.start_date)) / timedelta(days=1)
        total_posts = sum(_POSTS_PER_DAY[p] * days for p in platforms)

    return {
        "id": _doc_id("plan"),
        "startDate": data.start_date,
        "endDate": data.end_date,
        "frequency": data.frequency,
        "topics": topics,
        "platforms": platforms,
        "schedule": {
            "platformSchedules": schedules,
            "contentThemes": themes,
            "recommendations": {
                "postingTimes": schedules,
                "contentMix": {
                    "educational": 0.4,
                    "engagement": 0.3,
                    "promotional": 0.2,
                    "entertainment": 0.1,
                },
                "hashtagStrategy": [
                    {
                        "topic": topic,
                        "suggestedHashtags": [f"#{''.join(topic.split())}", "#Tech", "#Innovation"],
                    }
                    for topic in topics
                ],
            },
        },
        "suggestedContent": [
            {
                "title": "Sample Post 1",
                "platform": platforms[0] if platforms else "linkedin",
                "scheduledDate": data.start_date,
                "type": "post",
                "description": f"Content about {topics[0] if topics else 'technology'}",
                "status": "draft",
                "series": themes[0]["series"][0]["name"] if themes else None,
            }
        ],
        "metadata": {
            "totalPosts": total_posts,
            "coveragePeriod": f"{data.start_date} to {data.end_date}",
            "lastUpdated": _now_iso(),
        },
    }


def _get_schedule(data: CalendarData) -> Dict[str, Any]:
    def post(post_id: str, title: str, platform: str, at: str, kind: str, mix: str) -> Dict:
        return {
            "id": post_id,
            "title": title,
            "platform": platform,
            "scheduledDate": data.start_date,
            "scheduledTime": at,
            "status": "scheduled",
            "type": kind,
            "contentMixType": mix,
        }

    next_slot = datetime.now(timezone.utc) + timedelta(days=1)
    return {
        "period": {"startDate": data.start_date, "endDate": data.end_date},
        "schedule": {
            "daily": [
                {
                    "platform": "linkedin",
                    "posts": [
                        post("content_123", "AI Development Best Practices", "linkedin",
                             "09:00", "educational", "educational"),
                        post("content_124", "Quick Dev Productivity Tips", "linkedin",
                             "16:00", "quick-tip", "engagement"),
                    ],
                },
                {
                    "platform": "twitter",
                    "posts": [
                        post("content_125", "Morning Tech Update", "twitter",
                             "08:00", "news", "educational"),
                    ],
                },
            ],
            "weekly": [
                {
                    "platform": "blog",
                    "posts": [
                        post("content_126", "Deep Dive: Future of AI Development", "blog",
                             "11:00", "article", "educational"),
                    ],
                },
            ],
        },
        "metadata": {
            "totalScheduled": 4,
            "nextAvailableSlot": next_slot.isoformat(),
            "platformBreakdown": {"linkedin": 2, "twitter": 1, "blog": 1},
        },
    }


# Calendar actions mutate the schedule: repeated calls must each run.
@register_tool("content_calendar_tool", CalendarArgs, memoize=False)
async def content_calendar_tool(args: CalendarArgs, context: ToolContext) -> Dict[str, Any]:
    """Manage content calendar, scheduling, and planning"""
    data = args.data
    action = args.action

    if action is CalendarAction.SAVE_STRATEGY:
        if not data.strategy:
            raise ValueError("Strategy is required for save_strategy action")
        return {
            "id": _doc_id("strategy"),
            **data.strategy,
            "created": _now_iso(),
            "lastUpdated": _now_iso(),
            "status": "active",
        }

    if action is CalendarAction.GET_STRATEGY:
        return {
            "id": "strategy_123",
            "mission": "Help professionals showcase their expertise",
            "targetAudience": "Tech professionals and businesses",
            "contentTypes": [
                "Actionable",
                "Motivational",
                "Analytical",
                "Contrarian",
                "Observation",
            ],
            "formats": ["Quotes with Image", "Infographic", "Vertical Video", "Carousel PDF"],
        }

    if action is CalendarAction.GENERATE_IDEAS:
        if not data.topics:
            raise ValueError("Topics are required for generate_ideas action")
        return {
            "ideas": [
                {
                    "topic": topic,
                    "contentIdeas": [
                        {
                            "type": "Actionable",
                            "headline": f"How to master {topic} in 30 days",
                            "description": "Step-by-step guide with practical exercises",
                        },
                        {
                            "type": "Analytical",
                            "headline": f"Why {topic} is transforming the industry",
                            "description": "Deep dive into current trends and impact",
                        },
                    ],
                }
                for topic in data.topics
            ]
        }

    if action is CalendarAction.CREATE_PLAN:
        return _create_plan(data)

    if action is CalendarAction.ADD_CONTENT:
        if not data.content:
            raise ValueError("Content is required for add_content action")
        return {
            "id": _doc_id("content"),
            **data.content.model_dump(mode="json", by_alias=True, exclude_none=True),
            "created": _now_iso(),
            "lastUpdated": _now_iso(),
        }

    if action is CalendarAction.GET_SCHEDULE:
        return _get_schedule(data)

    # update_content
    if not data.content_id or not data.content:
        raise ValueError("Content ID and updated content are required")
    return {
        "id": data.content_id,
        **data.content.model_dump(mode="json", by_alias=True, exclude_none=True),
        "lastUpdated": _now_iso(),
        "updateStatus": "success",
    }
