"""Discord adapter for DiscoClaude."""

from __future__ import annotations

import asyncio
import contextlib
import importlib
import io
import logging
import re
from collections import deque
from types import ModuleType
from typing import TYPE_CHECKING, Awaitable, Callable, Coroutine, Optional, Protocol, cast

from discoclaude.constants import DEFAULT_CONTINUE_PROMPT, DISCORD_READY_TIMEOUT_S
from discoclaude.core.models import ButtonStyle, EmbedData, EmbedField, MessageContent
from discoclaude.git import handler as git_handler
from discoclaude.git.repo_helpers import ResolutionStrategy
from discoclaude.git.types import WorktreeResult

if TYPE_CHECKING:
    from discoclaude.config import DiscordConfig
    from discoclaude.core.claude_handlers import ClaudeHandlers
    from discoclaude.core.task_registry import TaskRegistry

logger = logging.getLogger(__name__)

_CHANNEL_NAME_RE = re.compile(r"[^a-z0-9_-]+")
_HISTORY_SIZE = 50


class AdapterError(Exception):
    """Raised when Discord cannot complete a required operation."""


class DiscordClientLike(Protocol):
    """Minimal discord.py client surface used by the adapter."""

    user: object | None

    def event(self, coro: Callable[..., Awaitable[None]]) -> object: ...

    async def start(self, token: str) -> None: ...

    async def close(self) -> None: ...


def channel_name_for_branch(branch: str) -> str:
    """Discord text channel name for a branch (lower-case, hyphenated)."""
    return _CHANNEL_NAME_RE.sub("-", branch.lower()).strip("-") or "main"


def format_worktree_result(result: WorktreeResult, action: str) -> str:
    if result.is_existing:
        return f"Worktree already exists at `{result.full_path}`"
    if not result.ok:
        return f"Failed to {action} worktree: {result.message}"
    return f"Worktree {action}d at `{result.full_path}`\n{result.message}".rstrip()


class InteractionReply:
    """ReplyContext backed by a discord.py Interaction."""

    def __init__(self, interaction: object) -> None:
        self._interaction = interaction

    async def defer(self) -> None:
        response = getattr(self._interaction, "response", None)
        await DiscordAdapter._require_async_callable(getattr(response, "defer", None), label="response.defer")(
            thinking=True
        )

    async def edit_reply(self, text: str) -> Optional[str]:
        edit_fn = DiscordAdapter._require_async_callable(
            getattr(self._interaction, "edit_original_response", None), label="edit_original_response"
        )
        message = await edit_fn(content=text)
        message_id = getattr(message, "id", None)
        return str(message_id) if message_id is not None else None


class DiscordAdapter:
    """Discord bot adapter using discord.py.

    Acts as the MessageSender for ClaudeSender (one text channel per branch)
    and routes slash commands and buttons to ClaudeHandlers and git helpers.
    """

    ADAPTER_KEY = "discord"
    max_message_size = 2000

    def __init__(
        self,
        settings: "DiscordConfig",
        *,
        work_dir: str,
        repo_name: str,
        branch_name: str,
        force_bare: bool = False,
        resolution_strategy: ResolutionStrategy = ResolutionStrategy.LEGACY,
        task_registry: "TaskRegistry | None" = None,
    ) -> None:
        self._discord: ModuleType = importlib.import_module("discord")
        self._token = settings.token
        self._application_id = settings.application_id
        self._guild_id = settings.guild_id
        self._channel_id = settings.channel_id
        self._mention_user_id = settings.mention_user_id
        self.category_name = settings.category_name or repo_name
        self.work_dir = work_dir
        self.repo_name = repo_name
        self.branch_name = branch_name
        self._force_bare = force_bare
        self._resolution_strategy = resolution_strategy
        self.task_registry = task_registry
        self.handlers: "ClaudeHandlers | None" = None
        self._client: DiscordClientLike | None = None
        self._tree: object | None = None
        self._channel: object | None = None
        self._gateway_task: asyncio.Task[object] | None = None
        self._ready_event = asyncio.Event()
        self._sent_message_ids: deque[str] = deque(maxlen=_HISTORY_SIZE)

    def attach_handlers(self, handlers: "ClaudeHandlers") -> None:
        self.handlers = handlers

    async def start(self) -> None:
        """Initialize Discord client and start gateway task."""
        if not self._token:
            raise ValueError("DISCORD_BOT_TOKEN is required to start Discord adapter")

        intents = self._discord.Intents.default()
        intents.guilds = True

        client_kwargs: dict[str, object] = {"intents": intents}
        if self._application_id is not None:
            client_kwargs["application_id"] = self._application_id
        self._client = self._discord.Client(**client_kwargs)
        self._register_slash_commands()
        self._register_gateway_handlers()
        self._ready_event.clear()

        if self.task_registry:
            self._gateway_task = self.task_registry.spawn(self._client.start(self._token), name="discord-gateway")
        else:
            self._gateway_task = asyncio.create_task(self._client.start(self._token), name="discord-gateway")

        try:
            await asyncio.wait_for(self._ready_event.wait(), timeout=DISCORD_READY_TIMEOUT_S)
        except asyncio.TimeoutError as exc:
            if self._gateway_task and self._gateway_task.done():
                task_exc = self._gateway_task.exception()
                if task_exc:
                    raise RuntimeError(f"Discord gateway failed to start: {task_exc}") from task_exc
            raise RuntimeError(
                f"Discord adapter did not become ready within {DISCORD_READY_TIMEOUT_S:.0f} seconds"
            ) from exc

    async def stop(self) -> None:
        """Stop Discord client and gateway task."""
        self._tree = None
        if self._client is not None:
            await self._client.close()
        if self._gateway_task and not self._gateway_task.done():
            self._gateway_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._gateway_task

    @staticmethod
    def _require_async_callable(fn: object, *, label: str) -> Callable[..., Awaitable[object]]:
        if not callable(fn):
            raise AdapterError(f"{label} is not callable")
        return cast(Callable[..., Awaitable[object]], fn)

    # ------------------------------------------------------------------
    # MessageSender
    # ------------------------------------------------------------------

    async def send_message(self, content: MessageContent) -> Optional[str]:
        if self._channel is None:
            logger.warning("Discord channel not ready; dropping message")
            return None
        send_fn = self._require_async_callable(getattr(self._channel, "send", None), label="Discord channel send")
        sent = await send_fn(**self._build_payload(content))
        message_id = getattr(sent, "id", None)
        if message_id is None:
            raise AdapterError("Discord send_message returned message without id")
        self._sent_message_ids.append(str(message_id))
        return str(message_id)

    async def edit_message(self, message_id: str, content: MessageContent) -> None:
        """Edit a message in the bot channel; errors propagate so callers can fall back."""
        message = await self._fetch_message(message_id)
        edit_fn = self._require_async_callable(getattr(message, "edit", None), label="Discord message edit")
        payload = self._build_payload(content)
        files = payload.pop("files", None)
        if files:
            payload["attachments"] = files
        await edit_fn(**payload)

    async def _fetch_message(self, message_id: str) -> object:
        if self._channel is None:
            raise AdapterError("Discord channel not ready")
        if not message_id.isdigit():
            raise AdapterError(f"Discord message_id must be numeric, got {message_id!r}")
        fetch_fn = self._require_async_callable(
            getattr(self._channel, "fetch_message", None), label="Discord channel fetch_message"
        )
        return await fetch_fn(int(message_id))

    def _build_embed(self, data: EmbedData) -> object:
        embed = self._discord.Embed(title=data.title, description=data.description, color=data.color)
        for embed_field in data.fields:
            embed.add_field(name=embed_field.name, value=embed_field.value, inline=embed_field.inline)
        if data.timestamp:
            embed.timestamp = self._discord.utils.utcnow()
        return embed

    def _build_view(self, content: MessageContent) -> object:
        # Clicks are routed by custom_id in on_interaction, so buttons carry no callbacks.
        view = self._discord.ui.View(timeout=None)
        styles = {
            ButtonStyle.PRIMARY: self._discord.ButtonStyle.primary,
            ButtonStyle.SECONDARY: self._discord.ButtonStyle.secondary,
            ButtonStyle.DANGER: self._discord.ButtonStyle.danger,
        }
        for row_index, row in enumerate(content.components):
            for button in row.buttons:
                view.add_item(
                    self._discord.ui.Button(
                        label=button.label,
                        custom_id=button.custom_id,
                        style=styles[button.style],
                        row=row_index,
                    )
                )
        return view

    def _build_payload(self, content: MessageContent) -> dict[str, object]:
        payload: dict[str, object] = {}
        if content.content:
            payload["content"] = content.content
        if content.embeds:
            payload["embeds"] = [self._build_embed(embed) for embed in content.embeds]
        if content.components:
            payload["view"] = self._build_view(content)
        if content.files:
            payload["files"] = [
                self._discord.File(io.BytesIO(attachment.data), filename=attachment.name, description=attachment.description)
                for attachment in content.files
            ]
        return payload

    # ------------------------------------------------------------------
    # Gateway / infrastructure
    # ------------------------------------------------------------------

    def _register_gateway_handlers(self) -> None:
        if self._client is None:
            raise AdapterError("Discord client not initialized")

        async def on_ready() -> None:
            await self._handle_on_ready()

        async def on_interaction(interaction: object) -> None:
            await self._handle_component_interaction(interaction)

        self._client.event(on_ready)
        self._client.event(on_interaction)

    async def _handle_on_ready(self) -> None:
        if self._client is None:
            return
        logger.info("Discord adapter ready as %s", getattr(self._client, "user", None))

        try:
            await self._ensure_channel()
        except Exception as exc:
            logger.warning("Discord channel provisioning failed: %s", exc)

        if self._tree is not None:
            sync_fn = getattr(self._tree, "sync", None)
            object_cls = getattr(self._discord, "Object", None)
            if callable(sync_fn):
                try:
                    sync = self._require_async_callable(sync_fn, label="Discord command tree sync")
                    if self._guild_id is not None and callable(object_cls):
                        await sync(guild=object_cls(id=self._guild_id))
                    else:
                        await sync()
                except Exception as exc:
                    logger.warning("Failed to sync Discord slash commands: %s", exc)

        self._ready_event.set()

    async def _ensure_channel(self) -> None:
        """Resolve the bot channel: configured id, else `<category>/<branch>` in the guild."""
        if self._channel_id is not None:
            self._channel = await self._get_channel(self._channel_id)
            if self._channel is not None:
                return
            logger.warning("Configured Discord channel %s not found", self._channel_id)

        guild = await self._resolve_guild()
        if guild is None:
            logger.warning("DISCORD_GUILD_ID missing or invalid; no channel available for progress messages")
            return

        category = await self._find_or_create_category(guild, self.category_name)
        self._channel = await self._find_or_create_text_channel(guild, category, channel_name_for_branch(self.branch_name))

    async def _get_channel(self, channel_id: int) -> object | None:
        if self._client is None:
            return None

        get_fn = getattr(self._client, "get_channel", None)
        if callable(get_fn):
            cached = get_fn(channel_id)
            if cached is not None:
                return cached

        fetch_fn = getattr(self._client, "fetch_channel", None)
        if callable(fetch_fn):
            try:
                return await self._require_async_callable(fetch_fn, label="Discord client fetch_channel")(channel_id)
            except Exception as exc:
                logger.debug("Discord fetch_channel(%s) failed: %s", channel_id, exc)
        return None

    async def _resolve_guild(self) -> object | None:
        """Resolve the configured guild by ID."""
        if self._client is None or self._guild_id is None:
            return None

        get_guild_fn = getattr(self._client, "get_guild", None)
        guild = get_guild_fn(self._guild_id) if callable(get_guild_fn) else None

        if guild is None:
            fetch_guild_fn = getattr(self._client, "fetch_guild", None)
            if callable(fetch_guild_fn):
                try:
                    guild = await self._require_async_callable(fetch_guild_fn, label="fetch_guild")(self._guild_id)
                except Exception as exc:
                    logger.debug("Failed to fetch guild %s: %s", self._guild_id, exc)

        return guild

    async def _find_or_create_category(self, guild: object, name: str) -> object | None:
        """Find an existing category by name, or create one."""
        for category in getattr(guild, "categories", None) or []:
            category_name = getattr(category, "name", None)
            if isinstance(category_name, str) and category_name.lower() == name.lower():
                return category

        create_fn = getattr(guild, "create_category", None)
        if not callable(create_fn):
            return None
        try:
            category = await self._require_async_callable(create_fn, label="guild.create_category")(name=name)
            logger.info("Created Discord category: %s", name)
            return category
        except Exception as exc:
            logger.warning("Failed to create Discord category '%s': %s", name, exc)
            return None

    async def _find_or_create_text_channel(self, guild: object, category: object | None, name: str) -> object | None:
        """Find a text channel by name inside the category (or guild), or create it there."""
        scope = category if category is not None else guild
        for channel in getattr(scope, "text_channels", None) or []:
            if getattr(channel, "name", None) == name:
                logger.debug("Found existing Discord text channel: %s", name)
                return channel

        create_fn = getattr(guild, "create_text_channel", None)
        if not callable(create_fn):
            logger.warning("Guild has no create_text_channel method; cannot create '%s'", name)
            return None
        try:
            create = self._require_async_callable(create_fn, label="guild.create_text_channel")
            if category is not None:
                channel = await create(name=name, category=category)
            else:
                channel = await create(name=name)
            logger.info("Created Discord text channel: %s", name)
            return channel
        except Exception as exc:
            logger.warning("Failed to create Discord text channel '%s': %s", name, exc)
            return None

    # ------------------------------------------------------------------
    # Slash commands
    # ------------------------------------------------------------------

    def _register_slash_commands(self) -> None:
        if self._client is None:
            return
        app_commands = getattr(self._discord, "app_commands", None)
        command_tree_cls = getattr(app_commands, "CommandTree", None) if app_commands else None
        command_cls = getattr(app_commands, "Command", None) if app_commands else None
        object_cls = getattr(self._discord, "Object", None)
        if not callable(command_tree_cls) or not callable(command_cls):
            logger.warning("Discord app_commands unavailable; slash commands not registered")
            return

        self._tree = command_tree_cls(self._client)

        # discord.py derives option names and types from these signatures.
        async def claude(interaction: object, prompt: str, session_id: Optional[str] = None) -> None:
            await self._handle_claude(interaction, prompt, session_id)

        async def continue_(interaction: object, prompt: Optional[str] = None) -> None:
            await self._handle_continue(interaction, prompt)

        async def claude_plan(interaction: object, prompt: str, session_id: Optional[str] = None) -> None:
            await self._handle_claude(interaction, prompt, session_id, plan=True)

        async def continue_plan(interaction: object, prompt: Optional[str] = None) -> None:
            await self._handle_continue(interaction, prompt, plan=True)

        async def claude_cancel(interaction: object) -> None:
            await self._handle_cancel(interaction)

        async def worktree(interaction: object, branch: str, ref: Optional[str] = None) -> None:
            await self._handle_worktree_create(interaction, branch, ref)

        async def worktrees(interaction: object) -> None:
            await self._handle_worktree_list(interaction)

        async def worktree_remove(interaction: object, branch: str) -> None:
            await self._handle_worktree_remove(interaction, branch)

        async def git_status(interaction: object) -> None:
            await self._handle_git_status(interaction)

        commands = [
            command_cls(name="claude", description="Send a prompt to Claude Code", callback=claude),
            command_cls(name="continue", description="Continue the most recent Claude Code session", callback=continue_),
            command_cls(name="claude-cancel", description="Cancel the running Claude Code session", callback=claude_cancel),
            command_cls(
                name="claude-plan",
                description="Send a prompt to Claude Code in plan mode (read-only, no edits)",
                callback=claude_plan,
            ),
            command_cls(
                name="continue-plan",
                description="Continue the most recent Claude Code session in plan mode",
                callback=continue_plan,
            ),
            command_cls(name="worktree", description="Create a git worktree for a branch", callback=worktree),
            command_cls(name="worktrees", description="List git worktrees", callback=worktrees),
            command_cls(name="worktree-remove", description="Remove the worktree for a branch", callback=worktree_remove),
            command_cls(name="git-status", description="Show git status for the working directory", callback=git_status),
        ]

        guild = object_cls(id=self._guild_id) if self._guild_id is not None and callable(object_cls) else None
        if guild is None:
            logger.warning("DISCORD_GUILD_ID missing; registering global slash commands")
        add_command = getattr(self._tree, "add_command", None)
        if callable(add_command):
            for command in commands:
                if guild is not None:
                    add_command(command, guild=guild)
                else:
                    add_command(command)

    def _spawn(self, coro: Coroutine[object, object, object], name: str) -> None:
        if self.task_registry:
            self.task_registry.spawn(coro, name=name)
        else:
            asyncio.create_task(coro, name=name)

    async def _respond(self, interaction: object, text: str, *, ephemeral: bool = False) -> None:
        response = getattr(interaction, "response", None)
        send_fn = self._require_async_callable(
            getattr(response, "send_message", None), label="Discord interaction response.send_message"
        )
        await send_fn(text, ephemeral=ephemeral)

    async def _run_claude(self, interaction: object, run: Callable[[InteractionReply], Awaitable[object]]) -> None:
        await run(InteractionReply(interaction))
        if self._mention_user_id and self._channel is not None:
            send_fn = self._require_async_callable(getattr(self._channel, "send", None), label="Discord channel send")
            await send_fn(f"<@{self._mention_user_id}> Claude Code finished.")

    async def _handle_claude(
        self, interaction: object, prompt: str, session_id: Optional[str], *, plan: bool = False
    ) -> None:
        handlers = self.handlers
        if handlers is None:
            await self._respond(interaction, "Bot is still starting up.", ephemeral=True)
            return
        self._spawn(
            self._run_claude(interaction, lambda ctx: handlers.on_claude(ctx, prompt, session_id, plan=plan)),
            name="claude-plan" if plan else "claude-run",
        )

    async def _handle_continue(self, interaction: object, prompt: Optional[str], *, plan: bool = False) -> None:
        handlers = self.handlers
        if handlers is None:
            await self._respond(interaction, "Bot is still starting up.", ephemeral=True)
            return
        self._spawn(
            self._run_claude(interaction, lambda ctx: handlers.on_continue(ctx, prompt, plan=plan)),
            name="continue-plan" if plan else "claude-continue",
        )

    async def _handle_cancel(self, interaction: object) -> None:
        cancelled = self.handlers.on_cancel() if self.handlers else False
        await self._respond(
            interaction,
            "Claude Code session cancelled." if cancelled else "No Claude Code session is running.",
            ephemeral=not cancelled,
        )

    async def _defer(self, interaction: object) -> None:
        await InteractionReply(interaction).defer()

    async def _edit_response(self, interaction: object, **payload: object) -> None:
        edit_fn = self._require_async_callable(
            getattr(interaction, "edit_original_response", None), label="edit_original_response"
        )
        await edit_fn(**payload)

    async def _handle_worktree_create(self, interaction: object, branch: str, ref: Optional[str]) -> None:
        await self._defer(interaction)
        result = await asyncio.to_thread(
            git_handler.create_worktree,
            self.work_dir,
            branch,
            ref,
            force_bare=self._force_bare,
            strategy=self._resolution_strategy,
        )
        await self._edit_response(interaction, content=format_worktree_result(result, "create"))

    async def _handle_worktree_list(self, interaction: object) -> None:
        await self._defer(interaction)
        listing = await asyncio.to_thread(
            git_handler.list_worktrees, self.work_dir, strategy=self._resolution_strategy
        )
        text = listing.outcome.text.strip()
        await self._edit_response(interaction, content=f"Worktrees for `{listing.base_dir}`:\n```\n{text}\n```")

    async def _handle_worktree_remove(self, interaction: object, branch: str) -> None:
        await self._defer(interaction)
        result = await asyncio.to_thread(
            git_handler.remove_worktree, self.work_dir, branch, strategy=self._resolution_strategy
        )
        await self._edit_response(interaction, content=format_worktree_result(result, "remove"))

    async def _handle_git_status(self, interaction: object) -> None:
        await self._defer(interaction)
        status = await asyncio.to_thread(git_handler.get_git_status, self.work_dir, force_bare=self._force_bare)
        embed = EmbedData(
            color=0x0099FF,
            title="Git Status",
            fields=[
                EmbedField(name="Branch", value=status.branch, inline=True),
                EmbedField(name="Changes", value=f"```\n{status.status}\n```"),
                EmbedField(name="Remotes", value=f"```\n{status.remote}\n```"),
            ],
        )
        await self._edit_response(interaction, embed=self._build_embed(embed))

    # ------------------------------------------------------------------
    # Buttons
    # ------------------------------------------------------------------

    @staticmethod
    def _component_custom_id(interaction: object) -> str | None:
        data = getattr(interaction, "data", None)
        if not isinstance(data, dict) or "component_type" not in data:
            return None
        custom_id = data.get("custom_id")
        return custom_id if isinstance(custom_id, str) else None

    async def _handle_component_interaction(self, interaction: object) -> None:
        custom_id = self._component_custom_id(interaction)
        if custom_id is None:
            return
        logger.debug("Button clicked: %s", custom_id)

        action, _, argument = custom_id.partition(":")
        if action == "continue" and argument:
            await self._handle_claude(interaction, DEFAULT_CONTINUE_PROMPT, argument)
        elif action == "copy-session" and argument:
            await self._respond(interaction, f"Session ID: `{argument}`", ephemeral=True)
        elif action == "jump-previous":
            await self._handle_jump_previous(interaction)
        elif action == "cancel-claude":
            await self._handle_cancel(interaction)
        elif custom_id == "workflow:git-status":
            await self._handle_git_status(interaction)
        else:
            logger.debug("Ignoring unknown button %s", custom_id)

    async def _handle_jump_previous(self, interaction: object) -> None:
        if len(self._sent_message_ids) < 2:
            await self._respond(interaction, "No previous message to jump to.", ephemeral=True)
            return
        try:
            message = await self._fetch_message(self._sent_message_ids[-2])
        except Exception as exc:
            logger.debug("Failed to fetch previous message: %s", exc)
            await self._respond(interaction, "Previous message is no longer available.", ephemeral=True)
            return
        await self._respond(interaction, f"Previous message: {getattr(message, 'jump_url', '')}", ephemeral=True)
