from jpeg2avif.cli import main

main()
