# src/vote_gallery/api/v1/endpoints/results.py
"""Aggregated result views over caller-supplied image descriptors."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter

from vote_gallery.api.v1.dependencies import RatingSyncDep
from vote_gallery.core.votes import VoteMap, dump_vote_map
from vote_gallery.schemas.results import (
    CategoryResults,
    ImageDescriptor,
    ResultsQuery,
    TierResults,
    VotersOut,
)
from vote_gallery.services.aggregation import (
    apply_rating_filter,
    classify,
    group_by_category,
    group_by_tier,
    known_voters,
    score,
)
from vote_gallery.services.rating_sync import RatingSync

router = APIRouter(prefix="/results", tags=["results"])


async def _load_vote_maps(engine: RatingSync, images: list[ImageDescriptor]) -> dict[str, VoteMap]:
    ids = list(dict.fromkeys(image.id for image in images))
    maps = await asyncio.gather(*(engine.get_votes(image_id) for image_id in ids))
    return dict(zip(ids, maps))


def _item(image: ImageDescriptor, votes: VoteMap) -> dict[str, Any]:
    return {
        "image": image.model_dump(exclude_none=True),
        "votes": dump_vote_map(votes),
        "score": score(votes),
        "category": classify(votes).value,
    }


@router.post("", response_model=CategoryResults)
async def get_results(query: ResultsQuery, engine: RatingSyncDep) -> CategoryResults:
    """Group images into consensus, controversial, rejected and unrated."""
    vote_maps = await _load_vote_maps(engine, query.images)
    selected = apply_rating_filter(query.view, query.images, vote_maps, voter=query.voter)
    groups = group_by_category(selected, vote_maps, voter=query.voter)
    return CategoryResults(
        voter=query.voter,
        view=query.view,
        groups={
            category.value: [_item(image, vote_maps.get(image.id, {})) for image in members]
            for category, members in groups.items()
        },
        counts={category.value: len(members) for category, members in groups.items()},
    )


@router.post("/tiers", response_model=TierResults)
async def get_tiers(query: ResultsQuery, engine: RatingSyncDep) -> TierResults:
    """Group images into score tiers, best first."""
    vote_maps = await _load_vote_maps(engine, query.images)
    selected = apply_rating_filter(query.view, query.images, vote_maps, voter=query.voter)
    tiers = group_by_tier(selected, vote_maps)
    return TierResults(
        tiers={
            tier.value: [_item(image, vote_maps.get(image.id, {})) for image in members]
            for tier, members in tiers.items()
        },
        counts={tier.value: len(members) for tier, members in tiers.items()},
    )


@router.post("/voters", response_model=VotersOut)
async def get_voters(query: ResultsQuery, engine: RatingSyncDep) -> VotersOut:
    """List every voter who voted on at least one of the images."""
    vote_maps = await _load_vote_maps(engine, query.images)
    return VotersOut(voters=known_voters(vote_maps.values()))
