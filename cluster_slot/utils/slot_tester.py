import argparse
import asyncio
import os
import random
from decimal import Decimal

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for saving files
import matplotlib.pyplot as plt
import numpy as np

from cluster_slot.app import create_game_session
from cluster_slot.config import TestingConfig
from cluster_slot.exceptions import ValidationException
from cluster_slot.schemas import load_game_config
from cluster_slot.services.presentation import HeadlessPresentation, InMemoryAccount


class SimulationConfig(TestingConfig):
    """No autoplay delays and the normal tumble ceiling."""
    AUTOPLAY_NEXT_SPIN_DELAY = 0.0
    AUTO_PLAY_FREE_SPINS = False


class SlotTester:
    """
    Headless many-spin simulation of one slot.

    Every paid spin is followed by its whole bonus round (if it triggered one)
    before the next paid spin, so ``num_spins`` counts paid spins only.
    """

    def __init__(self, slot_short_name, num_spins, bet, seed=None, rules=None, slots_dir=None):
        self.slot_short_name = slot_short_name
        self.num_spins = num_spins
        self.bet = Decimal(bet)
        self.seed = seed
        self.rules = rules
        self.slots_dir = slots_dir
        self.session = None

        # Statistics to be collected
        self.total_bet = Decimal('0')
        self.total_win = Decimal('0')
        self.paid_spins = 0
        self.free_spins_played = 0
        self.hit_count = 0
        self.bonus_triggers = 0
        self.retriggers = 0
        self.total_bonus_win = Decimal('0')
        self.bonus_data = []  # One entry per completed bonus round
        self.wins_by_multiplier = {}
        self.rtp_over_time = []
        self.spin_wins = []  # Paid spin win including its bonus round, as floats
        self.max_tumble_chain = 0
        self.tumble_capped_spins = 0
        self.aborted_spins = 0

        # Derived statistics
        self.overall_rtp = 0.0
        self.hit_frequency = 0.0
        self.bonus_frequency = 0.0
        self.avg_bonus_win = 0.0
        self.base_game_rtp_contribution = 0.0
        self.bonus_rtp_contribution = 0.0
        self.volatility_index = 0.0

    def load_configuration(self):
        if self.rules is None:
            try:
                self.rules = load_game_config(self.slot_short_name, slots_dir=self.slots_dir)
            except (FileNotFoundError, ValidationException) as e:
                print(f"ERROR: Could not load configuration for '{self.slot_short_name}': {e}")
                return False
        print(f"INFO: Loaded configuration for slot: {self.rules.name} ({self.rules.rows}x{self.rules.columns})")
        return True

    def initialize_simulation_state(self):
        # Ample balance: the tester measures the math, not bankroll survival
        price = self.bet * Decimal(self.rules.feature_buy_multiplier)
        account = InMemoryAccount(balance=price + self.bet * self.num_spins * 10)
        rng = random.Random(self.seed)
        self.session = create_game_session(SimulationConfig, presentation=HeadlessPresentation(),
                                           account=account, rng=rng, rules=self.rules, bet=self.bet)
        print(f"INFO: Initialized simulation state: balance={account.get_balance()}, seed={self.seed}")

    def run_simulation(self):
        if self.session is None:
            print("ERROR: Simulation state not initialized. Cannot run simulation.")
            return
        print(f"INFO: Starting simulation for {self.slot_short_name} with {self.num_spins} spins at bet {self.bet}.")
        asyncio.run(self._run())
        self.session.close()
        self.calculate_derived_statistics()
        print(f"INFO: Simulation finished for {self.slot_short_name}.")

    async def _run(self):
        progress_interval = self.num_spins // 20 or 1
        for i in range(self.num_spins):
            outcome = await self.session.spin()
            if outcome is None:
                self.aborted_spins += 1
                print(f"ERROR: Spin {i + 1} was aborted; halting simulation.")
                break
            spin_total = self._collect_spin_statistics(outcome)

            if outcome.bonus_triggered:
                spin_total += await self._play_bonus_round()

            self._record_paid_spin(spin_total)
            if (i + 1) % progress_interval == 0:
                print(f"INFO: Completed {i + 1}/{self.num_spins} spins...")

    async def _play_bonus_round(self):
        self.bonus_triggers += 1
        round_spins = 0
        while self.session.context.is_bonus_round:
            outcome = await self.session.spin()
            if outcome is None:
                self.aborted_spins += 1
                break
            round_spins += 1
            self._collect_spin_statistics(outcome)
            if outcome.retriggered:
                self.retriggers += 1
        round_win = self.session.accumulator.total_bonus_win
        self.total_bonus_win += round_win
        self.bonus_data.append({'total_win': round_win, 'num_spins': round_spins})
        return round_win

    def _collect_spin_statistics(self, outcome):
        self.total_bet += outcome.debited
        self.total_win += outcome.total_win
        if outcome.was_free_spin:
            self.free_spins_played += 1
        else:
            self.paid_spins += 1
            if outcome.total_win > 0:
                self.hit_count += 1
        self.max_tumble_chain = max(self.max_tumble_chain, len(outcome.steps))
        if outcome.tumble_capped:
            self.tumble_capped_spins += 1
        return outcome.total_win

    def _record_paid_spin(self, spin_total):
        multiple = int(round(spin_total / self.bet)) if self.bet else 0
        self.wins_by_multiplier[multiple] = self.wins_by_multiplier.get(multiple, 0) + 1
        self.spin_wins.append(float(spin_total))

        interval = self.num_spins // 20 or 1
        if self.paid_spins % interval == 0 or self.paid_spins == self.num_spins:
            rtp = float(self.total_win / self.total_bet * 100) if self.total_bet else 0.0
            self.rtp_over_time.append({'spin_count': self.paid_spins, 'rtp': rtp})

    def calculate_derived_statistics(self):
        if self.paid_spins == 0:
            print("Warning: No spins were simulated. Cannot calculate derived statistics.")
            return

        total_bet = float(self.total_bet)
        self.overall_rtp = float(self.total_win) / total_bet * 100 if total_bet else 0.0
        self.hit_frequency = self.hit_count / self.paid_spins * 100
        self.bonus_frequency = self.bonus_triggers / self.paid_spins * 100
        self.avg_bonus_win = float(self.total_bonus_win) / self.bonus_triggers if self.bonus_triggers else 0.0

        base_game_win = float(self.total_win - self.total_bonus_win)
        self.base_game_rtp_contribution = base_game_win / total_bet * 100 if total_bet else 0.0
        self.bonus_rtp_contribution = float(self.total_bonus_win) / total_bet * 100 if total_bet else 0.0

        if self.spin_wins and self.bet:
            self.volatility_index = float(np.std(np.array(self.spin_wins))) / float(self.bet)

    def get_summary(self):
        return {
            'slot': self.slot_short_name,
            'spins': self.paid_spins,
            'free_spins': self.free_spins_played,
            'bet': str(self.bet),
            'total_bet': str(self.total_bet),
            'total_win': str(self.total_win),
            'rtp': round(self.overall_rtp, 2),
            'hit_frequency': round(self.hit_frequency, 2),
            'bonus_frequency': round(self.bonus_frequency, 2),
            'bonus_triggers': self.bonus_triggers,
            'retriggers': self.retriggers,
            'avg_bonus_win': round(self.avg_bonus_win, 2),
            'base_game_rtp': round(self.base_game_rtp_contribution, 2),
            'bonus_rtp': round(self.bonus_rtp_contribution, 2),
            'volatility_index': round(self.volatility_index, 2),
            'max_tumble_chain': self.max_tumble_chain,
            'tumble_capped_spins': self.tumble_capped_spins,
            'aborted_spins': self.aborted_spins,
            'wins_by_multiplier': {str(k): v for k, v in sorted(self.wins_by_multiplier.items())},
        }

    def print_summary_statistics(self):
        print("\n--- Simulation Summary ---")
        print(f"Slot Game: {self.rules.name if self.rules else self.slot_short_name}")
        print(f"Total Spins Simulated: {self.paid_spins} (+{self.free_spins_played} free spins)")
        print(f"Bet Amount Per Spin: {self.bet}")
        print(f"Total Wagered: {self.total_bet}")
        print(f"Total Won: {self.total_win}")

        print("\n--- Detailed Metrics ---")
        print(f"Overall RTP: {self.overall_rtp:.2f}%")
        print(f"Hit Frequency: {self.hit_frequency:.2f}% ({self.hit_count} wins out of {self.paid_spins} spins)")
        print(f"Bonus Trigger Frequency: {self.bonus_frequency:.2f}% ({self.bonus_triggers} triggers, "
              f"{self.retriggers} retriggers)")
        print(f"Average Bonus Win: {self.avg_bonus_win:.2f} (Total from bonuses: {self.total_bonus_win})")
        print(f"Base Game RTP Contribution: {self.base_game_rtp_contribution:.2f}%")
        print(f"Bonus Game RTP Contribution: {self.bonus_rtp_contribution:.2f}%")
        print(f"Volatility Index (Win StdDev / Bet): {self.volatility_index:.2f}")
        print(f"Longest Tumble Chain: {self.max_tumble_chain} (capped spins: {self.tumble_capped_spins})")

        print("\nWin Distribution (by Bet Multiplier):")
        if self.wins_by_multiplier:
            for mult, count in sorted(self.wins_by_multiplier.items()):
                percentage = count / self.paid_spins * 100 if self.paid_spins else 0
                print(f"  {mult}x Bet: {count} times ({percentage:.2f}%)")
        else:
            print("  No win data to display for multiplier distribution.")

    def generate_graphs(self, graph_dir="slot_tester_graphs"):
        """Save win distribution and RTP convergence charts as PNG files. Returns the written paths."""
        os.makedirs(graph_dir, exist_ok=True)
        slot_display_name = self.rules.name if self.rules else self.slot_short_name
        written = []

        if self.wins_by_multiplier:
            multipliers = sorted(self.wins_by_multiplier)
            counts = [self.wins_by_multiplier[m] for m in multipliers]
            plt.figure(figsize=(12, 7))
            plt.bar([f"{m}x" for m in multipliers], counts, color='skyblue', width=0.8)
            plt.title(f"Win Multiplier Distribution for {slot_display_name}", fontsize=16)
            plt.xlabel("Bet Multiplier", fontsize=12)
            plt.ylabel("Frequency", fontsize=12)
            plt.grid(axis='y', linestyle='--', alpha=0.7)
            plt.tight_layout()
            path = os.path.join(graph_dir, f"{self.slot_short_name}_win_multipliers.png")
            plt.savefig(path)
            written.append(path)
            plt.clf()

        if self.rtp_over_time:
            plt.figure(figsize=(10, 6))
            plt.plot([d['spin_count'] for d in self.rtp_over_time], [d['rtp'] for d in self.rtp_over_time],
                     label="Simulated RTP", marker='.', linestyle='-')
            plt.title(f"RTP Convergence for {slot_display_name}", fontsize=16)
            plt.xlabel("Number of Spins", fontsize=12)
            plt.ylabel("RTP (%)", fontsize=12)
            plt.legend(fontsize=10)
            plt.grid(True, linestyle='--', alpha=0.7)
            plt.tight_layout()
            path = os.path.join(graph_dir, f"{self.slot_short_name}_rtp_convergence.png")
            plt.savefig(path)
            written.append(path)
            plt.clf()

        plt.close('all')
        for path in written:
            print(f"INFO: Saved graph to {path}")
        return written


def main():
    parser = argparse.ArgumentParser(description="Slot Tester - simulates play to measure RTP and bonus frequency.")
    parser.add_argument("slot_short_name", type=str, help="Directory name under cluster_slot/public/slots.")
    parser.add_argument("--num_spins", type=int, default=10000, help="Number of paid spins to simulate.")
    parser.add_argument("--bet", type=str, default="1", help="Bet per paid spin.")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible runs.")
    parser.add_argument("--graphs", action="store_true", help="Write PNG charts to ./slot_tester_graphs.")
    args = parser.parse_args()

    tester = SlotTester(args.slot_short_name, args.num_spins, args.bet, seed=args.seed)
    if tester.load_configuration():
        tester.initialize_simulation_state()
        tester.run_simulation()
        tester.print_summary_statistics()
        if args.graphs:
            tester.generate_graphs()


if __name__ == "__main__":
    main()
