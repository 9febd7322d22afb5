"""
CSV generator for simulating Kickstarter and Indiegogo backer exports.
"""

import csv
import random
import argparse
from pathlib import Path
from typing import Dict, List, Sequence

from pledgeflow.ingestion.models import Platform

FIRST_NAMES = ["Ada", "Grace", "Linus", "Margaret", "Alan", "Barbara", "Ken", "Frances", "Dennis", "Radia"]
LAST_NAMES = ["Lovelace", "Hopper", "Torvalds", "Hamilton", "Turing", "Liskov", "Thompson", "Allen", "Ritchie", "Perlman"]
COUNTRIES = ["US", "CA", "GB", "DE", "FR", "AU", "JP", "NL"]

# (reward id, title, minimum pledge)
REWARDS = [
    ("R-100", "Early Bird", 25),
    ("R-200", "Standard Edition", 40),
    ("R-300", "Deluxe Edition", 75),
    ("R-400", "Collector Bundle", 150),
]

ADD_ONS = ["Sticker Pack", "Enamel Pin", "Poster", "Dice Set", "Art Book"]

COLLECTED_STATUSES = ["collected", "paid", "completed", "shipped"]
OTHER_STATUSES = ["dropped", "refunded", "errored"]

KICKSTARTER_HEADERS = [
    "Backer Name", "Email", "Shipping Country", "Reward ID", "Reward Title",
    "Backing Minimum", "Bonus Support", "Pledged Status", "Notes",
]

INDIEGOGO_HEADERS = [
    "Name", "Email", "Shipping Country", "Perk ID", "Perk",
    "Amount", "Fulfillment Status", "Item Name",
]


class CSVGenerator:
    """Generates realistic backer export CSVs for testing the import pipeline."""

    def __init__(self, seed: int = None, invalid_rate: float = 0.0):
        self.random = random.Random(seed)
        self.invalid_rate = invalid_rate
        self.backer_counter = 1

    def _backer(self) -> Dict[str, str]:
        first = self.random.choice(FIRST_NAMES)
        last = self.random.choice(LAST_NAMES)
        email = f"{first}.{last}.{self.backer_counter}@example.com".lower()
        self.backer_counter += 1

        if self.random.random() < self.invalid_rate:
            email = email.replace('@', ' at ')

        if self.random.random() < 0.85:
            status = self.random.choice(COLLECTED_STATUSES)
        else:
            status = self.random.choice(OTHER_STATUSES)

        return {
            'name': f"{first} {last}",
            'email': email,
            'country': self.random.choice(COUNTRIES),
            'status': status,
        }

    def kickstarter_row(self, add_on_columns: int) -> List[str]:
        backer = self._backer()
        reward_id, title, minimum = self.random.choice(REWARDS)
        bonus = self.random.choice([0, 0, 0, 5, 10, 20])

        row = [
            backer['name'], backer['email'], backer['country'], reward_id, title,
            f"${minimum:.2f}", f"${bonus:.2f}", backer['status'], "",
        ]

        # Add-on cells alternate between "Name xN" and "Name" followed by a bare quantity
        cells: List[str] = []
        for add_on in self.random.sample(ADD_ONS, self.random.randint(0, min(2, len(ADD_ONS)))):
            qty = self.random.randint(1, 3)
            if self.random.random() < 0.5:
                cells.append(f"{add_on} x{qty}")
            else:
                cells.extend([add_on, str(qty)])

        cells = cells[:add_on_columns]
        return row + cells + [""] * (add_on_columns - len(cells))

    def indiegogo_row(self) -> List[str]:
        backer = self._backer()
        perk_id, title, minimum = self.random.choice(REWARDS)
        item = self.random.choice(ADD_ONS + [""])
        if item:
            item = f"{item} x{self.random.randint(1, 2)}"

        return [
            backer['name'], backer['email'], backer['country'], perk_id.replace('R-', 'P-'), title,
            f"{minimum}", backer['status'], item,
        ]

    def generate_rows(self, platform: Platform, num_backers: int, add_on_columns: int = 4) -> List[List[str]]:
        """Header row followed by ``num_backers`` data rows."""
        if platform == Platform.INDIEGOGO:
            return [list(INDIEGOGO_HEADERS)] + [self.indiegogo_row() for _ in range(num_backers)]

        headers = KICKSTARTER_HEADERS + [f"Add-on {index + 1}" for index in range(add_on_columns)]
        return [headers] + [self.kickstarter_row(add_on_columns) for _ in range(num_backers)]

    def to_text(self, rows: Sequence[Sequence[str]]) -> str:
        """Render rows as CSV text."""
        lines = []
        for row in rows:
            lines.append(",".join(
                f'"{cell}"' if ("," in cell or '"' in cell) else cell
                for cell in (value.replace('"', '""') for value in row)
            ))
        return "\n".join(lines) + "\n"

    def generate_csv(self, output_path: str, platform: Platform = Platform.KICKSTARTER, num_backers: int = 100) -> None:
        """Write a backer export for ``platform`` to ``output_path``."""
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        rows = self.generate_rows(platform, num_backers)

        with open(output_file, 'w', newline='', encoding='utf-8') as csvfile:
            writer = csv.writer(csvfile)
            writer.writerows(rows)

        collected = sum(1 for row in rows[1:] if any(cell in COLLECTED_STATUSES for cell in row))
        print(f"Generated {num_backers} {platform.value} backers in {output_path}")
        print(f"   Collected: {collected}/{num_backers}")

    def generate_test_scenarios(self, output_dir: str) -> None:
        """Write a clean export per platform and one with invalid emails."""
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        self.generate_csv(output_path / "kickstarter_backers.csv", Platform.KICKSTARTER, 50)
        self.generate_csv(output_path / "indiegogo_backers.csv", Platform.INDIEGOGO, 50)

        original_rate = self.invalid_rate
        self.invalid_rate = 0.3
        self.generate_csv(output_path / "kickstarter_invalid_emails.csv", Platform.KICKSTARTER, 50)
        self.invalid_rate = original_rate

        print(f"Generated test scenarios in {output_path}")


def main():
    """Main entry point for CSV generation."""
    parser = argparse.ArgumentParser(description='Generate crowdfunding backer CSV exports for testing')
    parser.add_argument('--output', '-o', required=True, help='Output CSV file path')
    parser.add_argument('--count', '-c', type=int, default=100, help='Number of backers to generate')
    parser.add_argument('--platform', '-p', choices=[p.value for p in Platform], default=Platform.KICKSTARTER.value)
    parser.add_argument('--invalid-rate', type=float, default=0.0, help='Share of rows with a malformed email')
    parser.add_argument('--seed', type=int, help='Random seed for reproducible output')
    parser.add_argument('--scenarios', '-s', action='store_true', help='Generate test scenarios')

    args = parser.parse_args()

    generator = CSVGenerator(seed=args.seed, invalid_rate=args.invalid_rate)

    if args.scenarios:
        generator.generate_test_scenarios(Path(args.output).parent)
    else:
        generator.generate_csv(args.output, Platform(args.platform), args.count)


if __name__ == "__main__":
    main()
