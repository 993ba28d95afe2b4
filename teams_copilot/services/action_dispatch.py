"""
Action dispatch coordinator.

Executes the plan predicted by the planner:

1. plan_ready normalises the plan: optional fallback to the semantic action,
   SAY commands moved in front of the DO command they follow, and sibling DO
   commands folded into the first DO of an action that can run with them.
2. Each DO command gets the outputs of the actions that ran before it as
   extra parameters, runs (together with its parallel actions) and stops the
   plan once it is the last DO command.
3. SAY commands are sent through the registered SAY handler.

Action handlers are registered with action() and receive
(context, state, parameters). Exceptions raised by handlers propagate.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from botbuilder.core import TurnContext
from pydantic import BaseModel, ConfigDict, ValidationError

from teams_copilot.models.errors import ActionParameterError
from teams_copilot.models.plan import (
    SAY_COMMAND_ACTION,
    STOP_COMMAND,
    UNKNOWN_ACTION,
    Plan,
    PredictedDoCommand,
    PredictedSayCommand,
)
from teams_copilot.models.turn_state import TurnState
from teams_copilot.utils.helpers import swap_do_and_say
from teams_copilot.utils.typing_indicator import TypingIndicator

logger = logging.getLogger(__name__)

SEMANTIC_ACTION = "getSemanticInfo"

ActionHandler = Callable[[TurnContext, TurnState, Any], Awaitable[Optional[str]]]


def accept_chained_outputs(model: Type[BaseModel]) -> Type[BaseModel]:
    """
    Subclass of `model` that keeps unknown keys.

    Outputs of earlier actions arrive as extra parameters named after those
    actions; they are exposed on the validated model (attribute access and
    model_extra) instead of being dropped.
    """
    if model.model_config.get("extra") == "allow":
        return model
    return type(model.__name__, (model,), {
        "__module__": model.__module__,
        "model_config": ConfigDict(extra="allow"),
    })


@dataclass
class ActionDefinition:
    """A registered action the planner may call."""
    name: str
    handler: ActionHandler
    parameters_model: Optional[Type[BaseModel]] = None
    can_run_with: List[str] = field(default_factory=list)
    description: str = ""
    validation_model: Optional[Type[BaseModel]] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        if self.parameters_model is not None:
            self.validation_model = accept_chained_outputs(self.parameters_model)


class ActionDispatchCoordinator:
    """Registry of actions plus the plan execution logic."""

    def __init__(
        self,
        route_unknown_action_to_semantic: bool = False,
        typing_indicator: Optional[TypingIndicator] = None
    ):
        self.route_unknown_action_to_semantic = route_unknown_action_to_semantic
        self.typing_indicator = typing_indicator
        self.actions: Dict[str, ActionDefinition] = {}

    def action(
        self,
        name: str,
        handler: ActionHandler,
        parameters_model: Optional[Type[BaseModel]] = None,
        can_run_with: Optional[List[str]] = None,
        description: str = ""
    ) -> ActionDefinition:
        """
        Register an action handler.

        Args:
            name: Action name used by DO commands
            handler: async (context, state, parameters) -> output
            parameters_model: Pydantic model the parameters are validated against
            can_run_with: Actions that may run concurrently with this one
            description: Shown to the planner

        Returns:
            The registered definition
        """
        if name in self.actions:
            logger.warning(f"Replacing handler of action '{name}'")
        definition = ActionDefinition(
            name=name,
            handler=handler,
            parameters_model=parameters_model,
            can_run_with=list(can_run_with or []),
            description=description
        )
        self.actions[name] = definition
        return definition

    @property
    def planner_actions(self) -> List[ActionDefinition]:
        """Actions the planner may predict (internal handlers excluded)."""
        return [a for a in self.actions.values() if a.name not in (SAY_COMMAND_ACTION, UNKNOWN_ACTION)]

    async def _start_typing(self, context: TurnContext, state: TurnState) -> None:
        if self.typing_indicator is not None:
            await self.typing_indicator.start(context, state)

    async def plan_ready(self, context: TurnContext, state: TurnState, plan: Plan) -> str:
        """
        Normalise a freshly predicted plan and store it in the temp state.

        Returns:
            STOP_COMMAND for an empty plan, "" otherwise
        """
        is_valid = len(plan.commands) > 0

        if is_valid:
            logger.info(f"Original Action plan: {plan.model_dump_json()}")

            if self.route_unknown_action_to_semantic and not any(
                isinstance(c, PredictedDoCommand) and c.action for c in plan.commands
            ):
                logger.warning(
                    'The action plan does not contain any "DO" command. '
                    'Will fallback to the default semantic action plan'
                )
                say = next((c for c in plan.commands if isinstance(c, PredictedSayCommand)), None)
                if say is not None and say.response.content:
                    await context.send_activity(say.response.content)

                plan.commands = [c for c in plan.commands if not isinstance(c, PredictedSayCommand)]
                plan.commands.append(
                    PredictedDoCommand(action=SEMANTIC_ACTION, parameters={"entity": state.temp.input})
                )

            swap_do_and_say(plan.commands)
            self._extract_parallel_actions(plan)

            logger.info(f"Updated Action plan: {plan.model_dump_json()}")

            if state.conversation.debug:
                await context.send_activity(
                    "**[DEBUG INFO]**\n```json\n" + json.dumps(plan.model_dump(mode="json"), indent=2) + "\n```"
                )

        state.temp.action_plan = plan

        if state.conversation.debug:
            state.temp.start_time = time.time()

        await self._start_typing(context, state)

        return "" if is_valid else STOP_COMMAND

    def _extract_parallel_actions(self, plan: Plan) -> None:
        """Fold DO commands of compatible actions into the first DO of an action declaring can_run_with."""
        for definition in self.actions.values():
            if not definition.can_run_with:
                continue

            primary = next(
                (c for c in plan.commands if isinstance(c, PredictedDoCommand) and c.action == definition.name),
                None
            )
            if primary is None:
                continue

            primary.parallel_actions = []
            for sibling_name in definition.can_run_with:
                if sibling_name not in self.actions:
                    continue
                sibling = next(
                    (
                        c for c in plan.commands
                        if isinstance(c, PredictedDoCommand) and c.action == sibling_name and c is not primary
                    ),
                    None
                )
                if sibling is not None:
                    primary.parallel_actions.append(sibling)
                    plan.commands = [c for c in plan.commands if c is not sibling]

    async def do_command(self, context: TurnContext, state: TurnState, command: PredictedDoCommand) -> str:
        """
        Execute a DO command.

        Returns:
            STOP_COMMAND when this was the plan's last DO command, otherwise the action output
        """
        action = command.action
        if not action:
            logger.error(f"DoCommandActionName: {action} is not defined in the action plan")
            return STOP_COMMAND
        logger.info(f"DoCommandActionName: {action}")

        # Outputs of earlier actions, up to this action's own key
        for key, output in state.temp.action_outputs.items():
            if key == action:
                break
            command.parameters[key] = output

        await self._start_typing(context, state)

        if command.parallel_actions:
            output, _ = await asyncio.gather(
                self.do_action(context, state, action, command.parameters),
                asyncio.gather(*[
                    self.do_action(context, state, parallel.action, parallel.parameters)
                    for parallel in command.parallel_actions
                ])
            )
        else:
            output = await self.do_action(context, state, action, command.parameters)

        if output and output != STOP_COMMAND:
            state.temp.action_outputs[action] = output

        if await self.is_last_action(context, state, action):
            return STOP_COMMAND
        return output or ""

    async def do_action(
        self,
        context: TurnContext,
        state: TurnState,
        name: str,
        parameters: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Run a registered action; unregistered names go to the unknown-action handler.

        Raises:
            ActionParameterError: Parameters do not match the action's model
        """
        definition = self.actions.get(name)
        if definition is None:
            logger.warning(f"Action '{name}' is not registered")
            unknown = self.actions.get(UNKNOWN_ACTION)
            if unknown is None:
                return STOP_COMMAND
            return await unknown.handler(context, state, {"action": name}) or ""

        arguments: Union[BaseModel, Dict[str, Any]] = dict(parameters or {})
        if definition.validation_model is not None:
            try:
                arguments = definition.validation_model.model_validate(arguments)
            except ValidationError as e:
                raise ActionParameterError(name, str(e)) from e

        return await definition.handler(context, state, arguments) or ""

    async def say_command(self, context: TurnContext, state: TurnState, command: PredictedSayCommand) -> str:
        say = self.actions.get(SAY_COMMAND_ACTION)
        if say is not None:
            return await say.handler(context, state, command) or ""
        if command.response.content:
            await context.send_activity(command.response.content)
        return ""

    async def is_last_action(self, context: TurnContext, state: TurnState, action: str) -> bool:
        """Whether the plan's final command is a DO of this action."""
        plan = state.temp.action_plan
        if plan is None:
            return True

        last_index = next(
            (
                index for index, c in enumerate(reversed(plan.commands))
                if isinstance(c, PredictedDoCommand) and c.action == action
            ),
            -1
        )
        is_last = last_index == 0

        if is_last and state.conversation.debug and state.temp.start_time:
            execution_time = time.time() - state.temp.start_time
            debug_message = f"**[DEBUG INFO]**\nExecution time: {execution_time:.3f} seconds"
            logger.info(debug_message)
            await context.send_activity(debug_message)

        return is_last

    async def execute_plan(self, context: TurnContext, state: TurnState, plan: Plan) -> str:
        """
        Run a plan to completion or until a command returns STOP.

        Returns:
            The output of the last executed command
        """
        output = await self.plan_ready(context, state, plan)
        if output == STOP_COMMAND:
            return output

        for command in list(state.temp.action_plan.commands):
            if isinstance(command, PredictedDoCommand):
                output = await self.do_command(context, state, command)
            else:
                output = await self.say_command(context, state, command)
            if output == STOP_COMMAND:
                break
        return output
